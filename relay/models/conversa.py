from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id

OPEN_STATUSES = ("ativo", "em-atendimento")


class Conversa(Base):
    __tablename__ = "conversas"

    id = Column(String(36), primary_key=True, default=new_id)
    empresa_id = Column(String(36), ForeignKey("empresas.id"), nullable=True, index=True)
    contato_id = Column(String(36), ForeignKey("contatos.id"), nullable=True, index=True)
    # ativo / aguardando / em-atendimento / encerrado
    status = Column(String, nullable=True, default="ativo")
    agente_id = Column(String(36), nullable=True)
    setor = Column(String, nullable=True)
    canal = Column(String, nullable=True, default="whatsapp")
    prioridade = Column(String, nullable=True, default="normal")
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


Index("ix_conversas_contato_status_updated", Conversa.contato_id, Conversa.status, Conversa.updated_at)
