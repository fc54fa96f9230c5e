from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id


class Setor(Base):
    __tablename__ = "setores"

    id = Column(String(36), primary_key=True, default=new_id)
    empresa_id = Column(String(36), ForeignKey("empresas.id"), nullable=True, index=True)
    nome = Column(String, nullable=False)
    descricao = Column(Text, nullable=True)
    ativo = Column(Boolean, nullable=True, default=True)
    capacidade_maxima = Column(Integer, nullable=True, default=10)
    atendimentos_ativos = Column(Integer, nullable=True, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Transferencia(Base):
    __tablename__ = "transferencias"

    id = Column(String(36), primary_key=True, default=new_id)
    conversa_id = Column(String(36), ForeignKey("conversas.id"), nullable=True, index=True)
    de_agente_id = Column(String(36), nullable=True)
    para_agente_id = Column(String(36), nullable=True)
    motivo = Column(Text, nullable=True)
    status = Column(String, nullable=True, default="concluida")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
