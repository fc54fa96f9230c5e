"""Máquina de estados das sessões de chatbot.

Uma sessão por conversa (``chatbot_sessions.conversa_id`` é único). A sessão
aponta para um node do fluxo pelo ``node_id`` do autor; cada resposta do
cliente é casada contra as opções desse node e o resultado decide se o cursor
anda, se a conversa vai para um setor ou se a sessão termina. Toda saída do bot
vai para a fila, nunca direto para o provider.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from relay.core.config import CHATBOT_NOT_UNDERSTOOD_PREFIX
from relay.core.timeutils import utcnow
from relay.errors import FlowIntegrityError
from relay.models.atendimento import Transferencia
from relay.models.chatbot import ChatbotFlow, ChatbotNode, ChatbotOption, ChatbotSession
from relay.models.contato import Contato
from relay.models.conversa import Conversa
from relay.chatbot.matcher import OptionMatcher, default_matcher, normalize
from relay.chatbot.outbox import Outbox, QueueOutbox
from relay.whatsapp.normalizer import InboundEvent

logger = logging.getLogger(__name__)

SESSION_ACTIVE = "ativo"
SESSION_FINISHED = "finalizado"
SESSION_TRANSFERRED = "transferido"

FLOW_ACTIVE_STATUSES = ("ativo", "active")

ACTION_NEXT_NODE = "next_node"
ACTION_TRANSFER = "transferir"
ACTION_FINISH = "finalizar"

_ACTION_ALIASES = {
    "next_node": ACTION_NEXT_NODE,
    "proximo_node": ACTION_NEXT_NODE,
    "proximo": ACTION_NEXT_NODE,
    "transferir": ACTION_TRANSFER,
    "transfer": ACTION_TRANSFER,
    "finalizar": ACTION_FINISH,
    "encerrar": ACTION_FINISH,
    "fim": ACTION_FINISH,
}

LIST_BUTTON_TEXT = "Ver opções"


@dataclass
class ChatbotOutcome:
    # started / advanced / not_understood / transferred / finished / ignored / no_flow / error
    action: str
    session_id: str | None = None
    node_id: str | None = None


def is_terminal(node: ChatbotNode) -> bool:
    return (node.tipo_resposta or "").lower() == "fim" or not node.options


def build_prompt_payload(
    node: ChatbotNode,
    *,
    telefone: str,
    empresa_id: str,
    prefix: str | None = None,
    intro: str | None = None,
) -> dict[str, Any]:
    texto = node.mensagem or ""
    if intro:
        texto = f"{intro}\n\n{texto}" if texto else intro
    if prefix:
        texto = f"{prefix}\n\n{texto}" if texto else prefix

    payload: dict[str, Any] = {
        "telefone": telefone,
        "mensagem": texto,
        "tipo": "texto",
        "opcoes": {},
        "empresaId": empresa_id,
    }
    options = list(node.options or [])
    tipo = (node.tipo_resposta or "texto").lower()
    if tipo == "botoes" and options:
        payload["tipo"] = "botoes"
        payload["opcoes"] = {"botoes": [{"id": option.option_id, "text": option.texto} for option in options]}
    elif tipo == "lista" and options:
        payload["tipo"] = "lista"
        payload["opcoes"] = {
            "lista": {
                "title": node.nome or "Menu",
                "description": texto,
                "buttonText": LIST_BUTTON_TEXT,
                "sections": [
                    {
                        "title": node.nome or "Opções",
                        "rows": [{"id": option.option_id, "title": option.texto} for option in options],
                    }
                ],
            }
        }
    return payload


def _text_payload(texto: str, *, telefone: str, empresa_id: str) -> dict[str, Any]:
    return {
        "telefone": telefone,
        "mensagem": texto,
        "tipo": "texto",
        "opcoes": {},
        "empresaId": empresa_id,
    }


def _trigger_matches(conditions: Any, content: str) -> bool:
    if not isinstance(conditions, dict):
        return False
    text = normalize(content)
    if not text:
        return False

    keywords = conditions.get("keywords") or []
    if isinstance(keywords, str):
        keywords = [keywords]
    for keyword in keywords:
        needle = normalize(str(keyword))
        if needle and needle in text:
            return True

    exact = conditions.get("exact") or []
    if isinstance(exact, str):
        exact = [exact]
    if any(normalize(str(value)) == text for value in exact):
        return True

    patterns = conditions.get("regex") or []
    if isinstance(patterns, str):
        patterns = [patterns]
    for pattern in patterns:
        try:
            if re.search(str(pattern), content or "", flags=re.IGNORECASE):
                return True
        except re.error:
            logger.warning("Regex de gatilho inválida ignorada: %s", pattern)
    return False


class ChatbotEngine:
    def __init__(
        self,
        *,
        matcher: OptionMatcher | None = None,
        outbox: Outbox | None = None,
        not_understood_prefix: str = CHATBOT_NOT_UNDERSTOOD_PREFIX,
    ) -> None:
        self._matcher = matcher or default_matcher()
        self._outbox = outbox or QueueOutbox()
        self._not_understood_prefix = not_understood_prefix

    # ------------------------------------------------------------------ fluxo

    def select_flow(self, db: Session, empresa_id: str, event: InboundEvent) -> ChatbotFlow | None:
        flows = (
            db.query(ChatbotFlow)
            .filter(
                ChatbotFlow.empresa_id == empresa_id,
                ChatbotFlow.status.in_(FLOW_ACTIVE_STATUSES),
            )
            .order_by(ChatbotFlow.priority.desc(), ChatbotFlow.created_at.asc())
            .all()
        )
        candidates = [flow for flow in flows if flow.auto_start_enabled is not False]

        for flow in candidates:
            if (flow.activation_mode or "").lower() == "always":
                return flow
            if flow.trigger_conditions and _trigger_matches(flow.trigger_conditions, event.content):
                return flow

        for flow in candidates:
            if flow.is_default:
                return flow
        return None

    def entry_node(self, db: Session, flow: ChatbotFlow) -> ChatbotNode | None:
        return (
            db.query(ChatbotNode)
            .filter(ChatbotNode.flow_id == flow.id)
            .order_by(ChatbotNode.ordem.asc(), ChatbotNode.node_id.asc())
            .first()
        )

    def _load_node(self, db: Session, flow_id: str, node_key: str | None) -> ChatbotNode:
        node = None
        if node_key:
            node = (
                db.query(ChatbotNode)
                .filter(ChatbotNode.flow_id == flow_id, ChatbotNode.node_id == node_key)
                .first()
            )
        if node is None:
            raise FlowIntegrityError(f"Node '{node_key}' não existe no fluxo {flow_id}")
        return node

    def _telefone(self, db: Session, conversa: Conversa) -> str:
        contato = db.get(Contato, conversa.contato_id) if conversa.contato_id else None
        if contato is None or not contato.telefone:
            raise FlowIntegrityError(f"Conversa {conversa.id} sem contato com telefone")
        return contato.telefone

    def _emit(self, db: Session, conversa: Conversa, payload: dict[str, Any]) -> None:
        correlation_id = f"chatbot:{conversa.id}:{uuid.uuid4().hex[:12]}"
        self._outbox.emit(db, correlation_id=correlation_id, payload=payload)

    # --------------------------------------------------------------- sessão

    def _transition(self, db: Session, chat_session: ChatbotSession, **values: Any) -> bool:
        """UPDATE condicional: só altera a sessão se ela ainda estiver ativa."""
        values.setdefault("updated_at", utcnow())
        result = db.execute(
            update(ChatbotSession)
            .where(ChatbotSession.id == chat_session.id, ChatbotSession.status == SESSION_ACTIVE)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.expire(chat_session)
        if result.rowcount != 1:
            logger.info(
                "Sessão de chatbot já não estava ativa; transição descartada",
                extra={"conversa_id": chat_session.conversa_id},
            )
            return False
        return True

    def _record_answer(
        self,
        chat_session: ChatbotSession,
        node: ChatbotNode,
        option: ChatbotOption,
        event: InboundEvent,
    ) -> dict[str, Any]:
        data = dict(chat_session.session_data or {})
        respostas = list(data.get("respostas") or [])
        respostas.append(
            {
                "node_id": node.node_id,
                "option_id": option.option_id,
                "resposta": event.content,
                "em": utcnow().isoformat(),
            }
        )
        data["respostas"] = respostas
        return data

    def start(self, db: Session, conversa: Conversa, event: InboundEvent) -> ChatbotOutcome:
        existing = db.query(ChatbotSession).filter(ChatbotSession.conversa_id == conversa.id).first()
        if existing is not None:
            return ChatbotOutcome(action="ignored", session_id=existing.id)

        flow = self.select_flow(db, conversa.empresa_id, event)
        if flow is None:
            logger.info("Nenhum fluxo de chatbot aplicável; conversa aguarda atendente",
                        extra={"conversa_id": conversa.id})
            return ChatbotOutcome(action="no_flow")

        node = self.entry_node(db, flow)
        if node is None:
            logger.warning("Fluxo %s sem node de entrada", flow.id, extra={"conversa_id": conversa.id})
            return ChatbotOutcome(action="no_flow")

        telefone = self._telefone(db, conversa)
        terminal = is_terminal(node)
        chat_session = ChatbotSession(
            conversa_id=conversa.id,
            flow_id=flow.id,
            current_node_id=node.node_id,
            session_data={"respostas": []},
            status=SESSION_FINISHED if terminal else SESSION_ACTIVE,
        )
        db.add(chat_session)
        db.flush()
        self._emit(
            db,
            conversa,
            build_prompt_payload(
                node,
                telefone=telefone,
                empresa_id=conversa.empresa_id,
                intro=flow.mensagem_inicial or None,
            ),
        )
        db.commit()
        logger.info(
            "Sessão de chatbot iniciada no fluxo %s node %s",
            flow.id,
            node.node_id,
            extra={"conversa_id": conversa.id},
        )
        return ChatbotOutcome(
            action="finished" if terminal else "started",
            session_id=chat_session.id,
            node_id=node.node_id,
        )

    def advance(self, db: Session, conversa: Conversa, event: InboundEvent) -> ChatbotOutcome:
        if conversa.agente_id:
            logger.info("Conversa com atendente; chatbot não responde", extra={"conversa_id": conversa.id})
            return ChatbotOutcome(action="ignored")

        chat_session = (
            db.query(ChatbotSession)
            .filter(ChatbotSession.conversa_id == conversa.id, ChatbotSession.status == SESSION_ACTIVE)
            .first()
        )
        if chat_session is None:
            return ChatbotOutcome(action="ignored")

        session_id = chat_session.id
        flow_id = chat_session.flow_id
        node = self._load_node(db, flow_id, chat_session.current_node_id)
        telefone = self._telefone(db, conversa)

        option = self._matcher.match(event, list(node.options or []))
        if option is None:
            if not self._transition(db, chat_session):
                db.rollback()
                return ChatbotOutcome(action="ignored", session_id=session_id)
            self._emit(
                db,
                conversa,
                build_prompt_payload(
                    node,
                    telefone=telefone,
                    empresa_id=conversa.empresa_id,
                    prefix=self._not_understood_prefix,
                ),
            )
            db.commit()
            return ChatbotOutcome(action="not_understood", session_id=session_id, node_id=node.node_id)

        data = self._record_answer(chat_session, node, option, event)
        action = _ACTION_ALIASES.get((option.proxima_acao or "").strip().lower())

        if action == ACTION_NEXT_NODE:
            target = self._load_node(db, flow_id, option.proximo_node_id)
            terminal = is_terminal(target)
            moved = self._transition(
                db,
                chat_session,
                current_node_id=target.node_id,
                session_data=data,
                status=SESSION_FINISHED if terminal else SESSION_ACTIVE,
            )
            if not moved:
                db.rollback()
                return ChatbotOutcome(action="ignored", session_id=session_id)
            self._emit(
                db,
                conversa,
                build_prompt_payload(target, telefone=telefone, empresa_id=conversa.empresa_id),
            )
            db.commit()
            return ChatbotOutcome(
                action="finished" if terminal else "advanced",
                session_id=session_id,
                node_id=target.node_id,
            )

        if action == ACTION_TRANSFER:
            if not self._transition(db, chat_session, session_data=data, status=SESSION_TRANSFERRED):
                db.rollback()
                return ChatbotOutcome(action="ignored", session_id=session_id)
            self._transfer_conversa(db, conversa, option.setor_transferencia)
            if option.mensagem_final:
                self._emit(db, conversa, _text_payload(option.mensagem_final, telefone=telefone,
                                                       empresa_id=conversa.empresa_id))
            db.commit()
            logger.info(
                "Conversa transferida pelo chatbot para o setor %s",
                option.setor_transferencia,
                extra={"conversa_id": conversa.id},
            )
            return ChatbotOutcome(action="transferred", session_id=session_id, node_id=node.node_id)

        if action == ACTION_FINISH:
            if not self._transition(db, chat_session, session_data=data, status=SESSION_FINISHED):
                db.rollback()
                return ChatbotOutcome(action="ignored", session_id=session_id)
            if option.mensagem_final:
                self._emit(db, conversa, _text_payload(option.mensagem_final, telefone=telefone,
                                                       empresa_id=conversa.empresa_id))
            db.commit()
            return ChatbotOutcome(action="finished", session_id=session_id, node_id=node.node_id)

        raise FlowIntegrityError(f"Ação desconhecida '{option.proxima_acao}' na opção {option.id}")

    def _transfer_conversa(self, db: Session, conversa: Conversa, setor: str | None) -> None:
        db.execute(
            update(Conversa)
            .where(Conversa.id == conversa.id, Conversa.status != "encerrado")
            .values(setor=setor, agente_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.expire(conversa)
        db.add(
            Transferencia(
                conversa_id=conversa.id,
                de_agente_id=None,
                para_agente_id=None,
                motivo="chatbot",
                status="concluida",
            )
        )

    def _end_after_error(self, db: Session, conversa_id: str) -> None:
        db.execute(
            update(ChatbotSession)
            .where(ChatbotSession.conversa_id == conversa_id, ChatbotSession.status == SESSION_ACTIVE)
            .values(status=SESSION_FINISHED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()

    def handle(self, db: Session, conversa: Conversa, event: InboundEvent, *, is_new: bool) -> ChatbotOutcome:
        """Ponto de entrada do webhook. Erros do fluxo encerram a sessão e nunca sobem."""
        conversa_id = conversa.id
        try:
            if is_new:
                return self.start(db, conversa, event)
            return self.advance(db, conversa, event)
        except FlowIntegrityError as exc:
            logger.warning("Fluxo de chatbot inconsistente: %s", exc, extra={"conversa_id": conversa_id})
        except Exception:
            logger.exception("Erro inesperado no chatbot", extra={"conversa_id": conversa_id})

        db.rollback()
        try:
            self._end_after_error(db, conversa_id)
        except Exception:
            logger.exception("Falha ao encerrar sessão de chatbot após erro", extra={"conversa_id": conversa_id})
            db.rollback()
        return ChatbotOutcome(action="error")
