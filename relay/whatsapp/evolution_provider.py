from __future__ import annotations

import json
import logging
from typing import Any, Callable

import httpx

from relay.core.config import EVOLUTION_HTTP_TIMEOUT
from relay.errors import OutboundValidationError
from relay.models.evolution_api_config import EvolutionApiConfig
from relay.whatsapp.base import OutboundMessage, SendResult, WhatsAppProvider, sanitize_payload
from relay.whatsapp.normalizer import normalize_phone

logger = logging.getLogger(__name__)

_MEDIA_KINDS = {
    "imagem": ("image", "imageUrl"),
    "documento": ("document", "documentUrl"),
    "audio": ("audio", "audioUrl"),
    "video": ("video", "videoUrl"),
}


def _without_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def build_request(message: OutboundMessage, config: EvolutionApiConfig) -> tuple[str, dict[str, Any]]:
    """Monta (url, payload) da chamada na Evolution API para o tipo da mensagem.

    Levanta OutboundValidationError quando falta um campo obrigatório do tipo;
    nada é enviado nesse caso.
    """
    base_url = (config.server_url or "").rstrip("/")
    if not base_url:
        raise OutboundValidationError("server_url não configurada")
    instance = config.instance_name
    number = normalize_phone(message.telefone)
    if not number:
        raise OutboundValidationError("telefone inválido")

    opcoes = message.opcoes
    tipo = message.tipo

    if tipo == "texto":
        if not message.mensagem:
            raise OutboundValidationError("mensagem é obrigatória para mensagens de texto")
        return f"{base_url}/message/sendText/{instance}", {
            "number": number,
            "text": message.mensagem,
            "delay": 0,
            "linkPreview": True,
        }

    if tipo in _MEDIA_KINDS:
        mediatype, url_field = _MEDIA_KINDS[tipo]
        media_url = getattr(opcoes, url_field)
        if not media_url:
            raise OutboundValidationError(f"{url_field} é obrigatório para mensagens do tipo {tipo}")
        payload: dict[str, Any] = {"number": number, "mediatype": mediatype, "media": media_url}
        if tipo in {"imagem", "video"}:
            payload["caption"] = opcoes.caption or message.mensagem
        elif tipo == "documento":
            payload["fileName"] = opcoes.fileName or "documento.pdf"
        return f"{base_url}/message/sendMedia/{instance}", payload

    if tipo == "botoes":
        if not opcoes.botoes:
            raise OutboundValidationError("botoes é obrigatório para mensagens com botões")
        return f"{base_url}/message/sendButtons/{instance}", {
            "number": number,
            "buttonMessage": _without_none(
                {
                    "text": message.mensagem,
                    "buttons": [button.model_dump() for button in opcoes.botoes],
                    "footer": opcoes.footer,
                }
            ),
        }

    if tipo == "lista":
        if not opcoes.lista:
            raise OutboundValidationError("lista é obrigatório para mensagens de lista")
        lista = opcoes.lista
        return f"{base_url}/message/sendList/{instance}", {
            "number": number,
            "listMessage": _without_none(
                {
                    "title": lista.title,
                    "description": lista.description,
                    "buttonText": lista.buttonText,
                    "sections": [section.model_dump(exclude_none=True) for section in lista.sections],
                    "footerText": lista.footerText,
                }
            ),
        }

    raise OutboundValidationError(f"Tipo de mensagem não suportado: {tipo}")


def is_provider_success(data: dict[str, Any] | None) -> bool:
    if not isinstance(data, dict):
        return False
    return bool(data.get("key") or data.get("success"))


class EvolutionWhatsAppProvider(WhatsAppProvider):
    """Uma chamada HTTP por mensagem; retentativas ficam a cargo da fila."""

    def __init__(
        self,
        *,
        timeout: float = EVOLUTION_HTTP_TIMEOUT,
        client_factory: Callable[[], httpx.Client] | None = None,
    ) -> None:
        self._timeout = timeout
        self._client_factory = client_factory or (lambda: httpx.Client(timeout=self._timeout))

    def send(self, message: OutboundMessage, config: EvolutionApiConfig) -> SendResult:
        url, payload = build_request(message, config)
        headers = {"Content-Type": "application/json", "apikey": config.api_key}

        logger.info(
            "Enviando para Evolution API tipo=%s endpoint=%s payload=%s",
            message.tipo,
            url,
            sanitize_payload(payload),
            extra={"instance": config.instance_name},
        )

        try:
            with self._client_factory() as client:
                response = client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Evolution API indisponível: %s", exc, extra={"instance": config.instance_name})
            return SendResult(success=False, error=f"Erro de rede na Evolution API: {exc}")

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = {"raw": response.text}
        if not isinstance(data, dict):
            data = {"data": data}

        if not (200 <= response.status_code < 300):
            error = f"Erro na Evolution API: {response.status_code} - {json.dumps(data, ensure_ascii=False)}"
            logger.warning(error, extra={"instance": config.instance_name, "status_code": response.status_code})
            return SendResult(success=False, provider_response=data, status_code=response.status_code, error=error)

        if not is_provider_success(data):
            logger.warning(
                "Evolution API respondeu sem key/success",
                extra={"instance": config.instance_name, "status_code": response.status_code},
            )
            return SendResult(
                success=False,
                provider_response=data,
                status_code=response.status_code,
                error="Falha ao enviar mensagem",
            )

        return SendResult(success=True, provider_response=data, status_code=response.status_code)
