import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from relay.core.database import get_db
from relay.deps import require_internal_token
from relay.errors import DispatchError, RelayError
from relay.whatsapp.service import WhatsAppService

router = APIRouter(prefix="/api/chatbot", tags=["chatbot"], dependencies=[Depends(require_internal_token)])
logger = logging.getLogger(__name__)


def get_whatsapp_service() -> WhatsAppService:
    return WhatsAppService()


@router.post("/send")
def send_message(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    try:
        result = service.send(db, payload)
    except DispatchError as exc:
        logger.error("Erro ao enviar mensagem: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "evolutionResponse": exc.response},
        )
    except RelayError as exc:
        logger.error("Erro ao enviar mensagem: %s", exc)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    return {
        "success": True,
        "message": "Mensagem enviada com sucesso",
        "data": result.provider_response,
        "evolutionResponse": result.provider_response,
    }
