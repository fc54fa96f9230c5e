from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from relay.core.config import IS_DEV, WHATSAPP_PROVIDER
from relay.errors import DispatchError, OutboundValidationError
from relay.services.provider_config import EvolutionConfigLookup
from relay.whatsapp.base import OutboundMessage, SendResult, WhatsAppProvider
from relay.whatsapp.evolution_provider import EvolutionWhatsAppProvider
from relay.whatsapp.mock_provider import MockWhatsAppProvider

logger = logging.getLogger(__name__)


def parse_outbound(payload: dict[str, Any] | OutboundMessage) -> OutboundMessage:
    if isinstance(payload, OutboundMessage):
        return payload
    try:
        return OutboundMessage.model_validate(payload)
    except ValidationError as exc:
        raise OutboundValidationError(f"Mensagem de saída inválida: {exc.errors()}") from exc


class WhatsAppService:
    def __init__(
        self,
        *,
        provider: WhatsAppProvider | None = None,
        config_lookup: EvolutionConfigLookup | None = None,
    ) -> None:
        self._provider = provider or self._select_provider()
        self._config_lookup = config_lookup or EvolutionConfigLookup()

    @staticmethod
    def _select_provider() -> WhatsAppProvider:
        if WHATSAPP_PROVIDER == "mock":
            if not IS_DEV:
                logger.warning("WHATSAPP_PROVIDER=mock fora de dev; mensagens não serão entregues")
            return MockWhatsAppProvider()
        return EvolutionWhatsAppProvider()

    def send(self, db: Session, payload: dict[str, Any] | OutboundMessage) -> SendResult:
        """Resolve a config do tenant e envia; levanta em falha de validação, config ou provider."""
        message = parse_outbound(payload)
        config = self._config_lookup.require(
            db,
            instance_name=message.instanceName,
            empresa_id=message.empresaId,
        )
        logger.info(
            "Enviando mensagem Evolution API tipo=%s instancia=%s",
            message.tipo,
            config.instance_name,
            extra={"instance": config.instance_name, "tenant_id": config.empresa_id},
        )
        result = self._provider.send(message, config)
        if not result.success:
            raise DispatchError(
                result.error or "Falha ao enviar mensagem",
                status_code=result.status_code,
                response=result.provider_response,
            )
        return result
