from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, Text

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id


class Mensagem(Base):
    __tablename__ = "mensagens"

    id = Column(String(36), primary_key=True, default=new_id)
    conversa_id = Column(String(36), ForeignKey("conversas.id"), nullable=True, index=True)
    conteudo = Column(Text, nullable=False)
    # cliente / agente / bot
    remetente_tipo = Column(String, nullable=False)
    remetente_nome = Column(String, nullable=True)
    remetente_id = Column(String(36), nullable=True)
    tipo_mensagem = Column(String, nullable=True, default="texto")
    # "metadata" é reservado pelo declarative
    metadata_ = Column("metadata", JSON, nullable=True)
    lida = Column(Boolean, nullable=True, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


Index("ix_mensagens_conversa_created", Mensagem.conversa_id, Mensagem.created_at)
