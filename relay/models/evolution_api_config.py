from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id


class EvolutionApiConfig(Base):
    __tablename__ = "evolution_api_config"

    id = Column(String(36), primary_key=True, default=new_id)
    empresa_id = Column(String(36), ForeignKey("empresas.id"), nullable=False, index=True)
    instance_name = Column(String, nullable=False, index=True)
    server_url = Column(String, nullable=False)
    api_key = Column(String, nullable=False)
    webhook_url = Column(String, nullable=True)
    webhook_events = Column(JSON, nullable=True)
    ativo = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
