from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field, model_validator

from relay.models.evolution_api_config import EvolutionApiConfig

MessageKind = Literal["texto", "imagem", "documento", "audio", "video", "botoes", "lista"]


class ButtonOption(BaseModel):
    id: str
    text: str


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class ListSection(BaseModel):
    title: str
    rows: List[ListRow] = Field(default_factory=list)


class ListOptions(BaseModel):
    title: str
    description: str = ""
    buttonText: str
    sections: List[ListSection] = Field(default_factory=list)
    footerText: Optional[str] = None


class OutboundOptions(BaseModel):
    imageUrl: Optional[str] = None
    caption: Optional[str] = None
    documentUrl: Optional[str] = None
    fileName: Optional[str] = None
    audioUrl: Optional[str] = None
    videoUrl: Optional[str] = None
    botoes: Optional[List[ButtonOption]] = None
    footer: Optional[str] = None
    lista: Optional[ListOptions] = None


class OutboundMessage(BaseModel):
    """Mensagem canônica de saída (mesmo formato do corpo de /api/chatbot/send)."""

    telefone: str = Field(..., min_length=1)
    mensagem: str = ""
    tipo: MessageKind = "texto"
    opcoes: OutboundOptions = Field(default_factory=OutboundOptions)
    empresaId: Optional[str] = None
    instanceName: Optional[str] = None

    @model_validator(mode="after")
    def _require_destination(self) -> "OutboundMessage":
        if not (self.empresaId or self.instanceName):
            raise ValueError("instanceName ou empresaId é obrigatório")
        return self


@dataclass
class SendResult:
    success: bool
    provider_response: dict[str, Any] | None = None
    status_code: int | None = None
    error: str | None = None


class WhatsAppProvider(Protocol):
    def send(self, message: OutboundMessage, config: EvolutionApiConfig) -> SendResult:
        ...


SENSITIVE_KEYS = {"apikey", "api_key", "authorization", "token"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)
