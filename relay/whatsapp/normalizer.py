"""Normalização dos webhooks da Evolution API.

Converte o corpo bruto de um evento ``MESSAGES_UPSERT`` em um
:class:`InboundEvent` canônico, ou em :class:`Skip` quando o evento não é uma
mensagem recebida de um cliente. Função pura: nenhum acesso a banco ou rede.

A extração do tipo de mensagem segue uma ordem fixa de precedência
(texto simples, texto estendido, imagem, documento, áudio, vídeo, resposta de
botão, resposta de lista); o primeiro campo presente no payload decide o tipo.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Union

UPSERT_EVENTS = {"messages_upsert", "messages.upsert"}

_JID_SUFFIXES = ("@s.whatsapp.net", "@c.us")
_NON_DIGITS = re.compile(r"\D")

KIND_TEXT = "texto"
KIND_IMAGE = "imagem"
KIND_DOCUMENT = "documento"
KIND_AUDIO = "audio"
KIND_VIDEO = "video"
KIND_BUTTON_RESPONSE = "botao_resposta"
KIND_LIST_RESPONSE = "lista_resposta"


@dataclass(frozen=True)
class Attachment:
    media_url: str | None
    mime_type: str | None
    file_name: str | None = None


@dataclass(frozen=True)
class ButtonResponse:
    selected_id: str
    display_text: str


@dataclass(frozen=True)
class ListResponse:
    selected_row_id: str


@dataclass(frozen=True)
class MessageBody:
    kind: str
    content: str
    attachment: Attachment | None = None
    button_response: ButtonResponse | None = None
    list_response: ListResponse | None = None


@dataclass(frozen=True)
class InboundEvent:
    event_kind: str
    instance_id: str
    from_me: bool
    remote_id: str | None
    remote_jid: str
    phone: str
    sender_display_name: str
    message_kind: str
    content: str
    provider_timestamp: int | None
    attachment: Attachment | None = None
    button_response: ButtonResponse | None = None
    list_response: ListResponse | None = None

    @property
    def selection_id(self) -> str | None:
        if self.button_response is not None:
            return self.button_response.selected_id
        if self.list_response is not None:
            return self.list_response.selected_row_id
        return None

    def metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "messageId": self.remote_id,
            "timestamp": self.provider_timestamp,
            "remoteJid": self.remote_jid,
            "instance": self.instance_id,
        }
        if self.attachment is not None:
            meta["mediaUrl"] = self.attachment.media_url
            meta["mimeType"] = self.attachment.mime_type
            if self.attachment.file_name:
                meta["fileName"] = self.attachment.file_name
        if self.button_response is not None:
            meta["selectedButtonId"] = self.button_response.selected_id
        if self.list_response is not None:
            meta["selectedRowId"] = self.list_response.selected_row_id
        return meta


@dataclass(frozen=True)
class Skip:
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


NormalizedWebhook = Union[InboundEvent, Skip]


def normalize_phone(raw: str | None) -> str:
    value = raw or ""
    for suffix in _JID_SUFFIXES:
        value = value.replace(suffix, "")
    return _NON_DIGITS.sub("", value)


def _text(section: Any) -> MessageBody | None:
    if isinstance(section, str):
        return MessageBody(kind=KIND_TEXT, content=section)
    return None


def _extended_text(section: dict) -> MessageBody:
    return MessageBody(kind=KIND_TEXT, content=str(section.get("text") or ""))


def _image(section: dict) -> MessageBody:
    return MessageBody(
        kind=KIND_IMAGE,
        content=str(section.get("caption") or ""),
        attachment=Attachment(media_url=section.get("url"), mime_type=section.get("mimetype")),
    )


def _document(section: dict) -> MessageBody:
    file_name = section.get("fileName")
    return MessageBody(
        kind=KIND_DOCUMENT,
        content=str(section.get("title") or file_name or ""),
        attachment=Attachment(
            media_url=section.get("url"),
            mime_type=section.get("mimetype"),
            file_name=file_name,
        ),
    )


def _audio(section: dict) -> MessageBody:
    return MessageBody(
        kind=KIND_AUDIO,
        content="[Áudio]",
        attachment=Attachment(media_url=section.get("url"), mime_type=section.get("mimetype")),
    )


def _video(section: dict) -> MessageBody:
    return MessageBody(
        kind=KIND_VIDEO,
        content=str(section.get("caption") or "[Vídeo]"),
        attachment=Attachment(media_url=section.get("url"), mime_type=section.get("mimetype")),
    )


def _button_response(section: dict) -> MessageBody:
    selected_id = str(section.get("selectedButtonId") or "")
    display_text = str(section.get("selectedDisplayText") or "")
    return MessageBody(
        kind=KIND_BUTTON_RESPONSE,
        content=display_text or selected_id,
        button_response=ButtonResponse(selected_id=selected_id, display_text=display_text),
    )


def _list_response(section: dict) -> MessageBody:
    reply = section.get("singleSelectReply") or {}
    row_id = str(reply.get("selectedRowId") or "")
    return MessageBody(
        kind=KIND_LIST_RESPONSE,
        content=row_id,
        list_response=ListResponse(selected_row_id=row_id),
    )


# Ordem de precedência: o primeiro campo presente define o tipo
MESSAGE_EXTRACTORS: tuple[tuple[str, Callable[[Any], MessageBody | None]], ...] = (
    ("conversation", _text),
    ("extendedTextMessage", _extended_text),
    ("imageMessage", _image),
    ("documentMessage", _document),
    ("audioMessage", _audio),
    ("videoMessage", _video),
    ("buttonsResponseMessage", _button_response),
    ("listResponseMessage", _list_response),
)


def extract_message_body(message: dict[str, Any] | None) -> MessageBody | None:
    if not isinstance(message, dict):
        return None
    for field_name, extractor in MESSAGE_EXTRACTORS:
        section = message.get(field_name)
        if not section:
            continue
        if field_name != "conversation" and not isinstance(section, dict):
            continue
        body = extractor(section)
        if body is not None:
            return body
    return None


def normalize_webhook(payload: Any) -> NormalizedWebhook:
    if not isinstance(payload, dict):
        return Skip("payload inválido")

    event = str(payload.get("event") or "")
    data = payload.get("data")
    if not isinstance(data, dict):
        return Skip("payload sem data", {"event": event})

    key = data.get("key")
    if not isinstance(key, dict):
        return Skip("payload sem key", {"event": event})

    from_me = bool(key.get("fromMe"))
    if event.strip().lower() not in UPSERT_EVENTS:
        return Skip("evento ignorado", {"event": event, "fromMe": from_me})
    if from_me:
        return Skip("mensagem enviada pela própria instância", {"event": event, "fromMe": True})

    remote_jid = str(key.get("remoteJid") or "")
    if remote_jid.endswith("@g.us"):
        return Skip("mensagem de grupo", {"remoteJid": remote_jid})

    phone = normalize_phone(remote_jid)
    if not phone:
        return Skip("remoteJid sem telefone", {"remoteJid": remote_jid})

    message = data.get("message")
    body = extract_message_body(message)
    if body is None:
        message_keys = sorted(message.keys()) if isinstance(message, dict) else []
        return Skip("tipo de mensagem não suportado", {"message_keys": message_keys})
    if body.kind == KIND_TEXT and not body.content.strip():
        return Skip("mensagem de texto vazia")

    timestamp = data.get("messageTimestamp")
    try:
        provider_timestamp = int(timestamp) if timestamp is not None else None
    except (TypeError, ValueError):
        provider_timestamp = None

    return InboundEvent(
        event_kind=event,
        instance_id=str(payload.get("instance") or ""),
        from_me=from_me,
        remote_id=key.get("id"),
        remote_jid=remote_jid,
        phone=phone,
        sender_display_name=str(data.get("pushName") or "Cliente"),
        message_kind=body.kind,
        content=body.content,
        provider_timestamp=provider_timestamp,
        attachment=body.attachment,
        button_response=body.button_response,
        list_response=body.list_response,
    )
