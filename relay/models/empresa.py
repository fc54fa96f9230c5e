from sqlalchemy import Boolean, Column, DateTime, String, func

from relay.core.database import Base
from relay.models._ids import new_id


class Empresa(Base):
    __tablename__ = "empresas"

    id = Column(String(36), primary_key=True, default=new_id)
    nome = Column(String, nullable=False)
    ativo = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
