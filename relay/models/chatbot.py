from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id


class ChatbotFlow(Base):
    __tablename__ = "chatbot_flows"

    id = Column(String(36), primary_key=True, default=new_id)
    empresa_id = Column(String(36), ForeignKey("empresas.id"), nullable=False, index=True)
    nome = Column(String, nullable=False)
    status = Column(String, nullable=False, default="ativo")
    is_default = Column(Boolean, nullable=True, default=False)
    priority = Column(Integer, nullable=True, default=0)
    activation_mode = Column(String, nullable=True)
    auto_start_enabled = Column(Boolean, nullable=True, default=True)
    trigger_conditions = Column(JSON, nullable=True)
    mensagem_inicial = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    nodes = relationship("ChatbotNode", back_populates="flow", cascade="all, delete-orphan")


class ChatbotNode(Base):
    __tablename__ = "chatbot_nodes"
    __table_args__ = (UniqueConstraint("flow_id", "node_id", name="uq_chatbot_nodes_flow_node"),)

    id = Column(String(36), primary_key=True, default=new_id)
    flow_id = Column(String(36), ForeignKey("chatbot_flows.id"), nullable=False, index=True)
    node_id = Column(String, nullable=False)
    nome = Column(String, nullable=False, default="")
    mensagem = Column(Text, nullable=False)
    # texto / botoes / lista / fim
    tipo_resposta = Column(String, nullable=False, default="texto")
    ordem = Column(Integer, nullable=True, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    flow = relationship("ChatbotFlow", back_populates="nodes")
    options = relationship(
        "ChatbotOption",
        back_populates="node",
        cascade="all, delete-orphan",
        order_by="ChatbotOption.ordem",
    )


class ChatbotOption(Base):
    __tablename__ = "chatbot_options"

    id = Column(String(36), primary_key=True, default=new_id)
    node_id = Column(String(36), ForeignKey("chatbot_nodes.id"), nullable=False, index=True)
    option_id = Column(String, nullable=False)
    texto = Column(String, nullable=False)
    ordem = Column(Integer, nullable=True, default=0)
    # next_node / transferir / finalizar
    proxima_acao = Column(String, nullable=False, default="next_node")
    proximo_node_id = Column(String, nullable=True)
    setor_transferencia = Column(String, nullable=True)
    mensagem_final = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    node = relationship("ChatbotNode", back_populates="options")


class ChatbotSession(Base):
    __tablename__ = "chatbot_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    conversa_id = Column(String(36), ForeignKey("conversas.id"), nullable=False, unique=True)
    flow_id = Column(String(36), ForeignKey("chatbot_flows.id"), nullable=False)
    current_node_id = Column(String, nullable=False)
    session_data = Column(JSON, nullable=True)
    # ativo / finalizado / transferido
    status = Column(String, nullable=False, default="ativo")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
