from __future__ import annotations

import logging
import uuid

from relay.models.evolution_api_config import EvolutionApiConfig
from relay.whatsapp.base import OutboundMessage, SendResult, WhatsAppProvider
from relay.whatsapp.evolution_provider import build_request

logger = logging.getLogger(__name__)


class MockWhatsAppProvider(WhatsAppProvider):
    """Provider de desenvolvimento: valida como a Evolution API mas não faz HTTP."""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, message: OutboundMessage, config: EvolutionApiConfig) -> SendResult:
        url, payload = build_request(message, config)
        message_id = f"mock-{uuid.uuid4().hex[:10]}"
        self.sent.append({"url": url, "payload": payload})
        logger.info("WhatsApp mock: tipo=%s url=%s", message.tipo, url)
        response = {
            "key": {"remoteJid": f"{payload['number']}@s.whatsapp.net", "fromMe": True, "id": message_id},
            "status": "PENDING",
        }
        return SendResult(success=True, provider_response=response, status_code=201)
