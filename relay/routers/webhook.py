import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from relay.chatbot.engine import ChatbotEngine
from relay.core.database import get_db
from relay.core.request_context import set_request_context
from relay.errors import TenantResolutionError
from relay.models.conversa import Conversa
from relay.models.processed_message import ProcessedMessage
from relay.services.resolver import ConversationResolver, append_inbound_message
from relay.whatsapp.normalizer import Skip, normalize_webhook

router = APIRouter(tags=["webhook"])
logger = logging.getLogger(__name__)


def get_resolver() -> ConversationResolver:
    return ConversationResolver()


def get_chatbot_engine() -> ChatbotEngine:
    return ChatbotEngine()


def _register_message(db: Session, message_id: str) -> bool:
    """Marca o id do provider como processado. Falso se já tinha sido recebido."""
    if db.query(ProcessedMessage).filter_by(message_id=message_id).first():
        return False
    db.add(ProcessedMessage(message_id=message_id))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return False
    return True


@router.post("/webhook/evolution")
@router.post("/api/whatsapp/evolution/webhook")
async def evolution_webhook(
    request: Request,
    db: Session = Depends(get_db),
    resolver: ConversationResolver = Depends(get_resolver),
    chatbot: ChatbotEngine = Depends(get_chatbot_engine),
):
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    normalized = normalize_webhook(payload)
    if isinstance(normalized, Skip):
        logger.info("Webhook ignorado: %s %s", normalized.reason, normalized.details)
        return {"success": True, "message": f"Evento ignorado: {normalized.reason}"}

    event = normalized
    set_request_context(correlation_id=event.remote_id)
    logger.info(
        "Mensagem recebida de %s tipo=%s",
        event.phone,
        event.message_kind,
        extra={"instance": event.instance_id},
    )

    try:
        if event.remote_id and not _register_message(db, event.remote_id):
            logger.info("Mensagem duplicada ignorada", extra={"instance": event.instance_id})
            return {"success": True, "message": "Mensagem duplicada ignorada"}

        resolution = resolver.resolve(db, event)
        set_request_context(tenant_id=resolution.empresa_id)
        mensagem = append_inbound_message(db, resolution, event)
        mensagem_id = mensagem.id
        # dedup, contato, conversa e mensagem entram juntos ou nada entra
        db.commit()
    except TenantResolutionError as exc:
        db.rollback()
        logger.error("Falha ao resolver empresa do webhook: %s", exc, extra={"instance": event.instance_id})
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Erro de banco ao processar webhook", extra={"instance": event.instance_id})
        return JSONResponse(status_code=500, content={"success": False, "error": "Erro ao salvar mensagem"})

    conversa = db.get(Conversa, resolution.conversa_id)
    outcome = chatbot.handle(db, conversa, event, is_new=resolution.is_new_conversation)

    return {
        "success": True,
        "message": "Mensagem processada com sucesso",
        "conversaId": resolution.conversa_id,
        "mensagemId": mensagem_id,
        "chatbot": outcome.action,
    }
