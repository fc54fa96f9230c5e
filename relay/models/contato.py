from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id


class Contato(Base):
    __tablename__ = "contatos"
    __table_args__ = (UniqueConstraint("empresa_id", "telefone", name="uq_contatos_empresa_telefone"),)

    id = Column(String(36), primary_key=True, default=new_id)
    empresa_id = Column(String(36), ForeignKey("empresas.id"), nullable=True, index=True)
    nome = Column(String, nullable=False)
    telefone = Column(String(30), nullable=True, index=True)
    email = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)
    observacoes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
