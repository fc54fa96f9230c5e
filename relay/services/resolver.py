from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relay.core.config import (
    CONVERSATION_OPEN_POLICY,
    RELAY_TENANT_FALLBACK,
    WHATSAPP_CHANNEL,
)
from relay.core.timeutils import utcnow
from relay.errors import TenantResolutionError
from relay.models.contato import Contato
from relay.models.conversa import OPEN_STATUSES, Conversa
from relay.models.mensagem import Mensagem
from relay.services.provider_config import EvolutionConfigLookup
from relay.whatsapp.normalizer import InboundEvent

logger = logging.getLogger(__name__)

POLICY_MOST_RECENT = "most_recent"
POLICY_UNIQUE_PER_CHANNEL = "unique_per_channel"


@dataclass(frozen=True)
class Resolution:
    empresa_id: str
    contato_id: str
    conversa_id: str
    is_new_conversation: bool
    is_new_contact: bool = False


class ConversationResolver:
    def __init__(
        self,
        *,
        config_lookup: EvolutionConfigLookup | None = None,
        open_policy: str = CONVERSATION_OPEN_POLICY,
        tenant_fallback: bool = RELAY_TENANT_FALLBACK,
        channel: str = WHATSAPP_CHANNEL,
    ) -> None:
        self._config_lookup = config_lookup or EvolutionConfigLookup()
        self._open_policy = open_policy
        self._tenant_fallback = tenant_fallback
        self._channel = channel

    def resolve_empresa_id(self, db: Session, instance_id: str) -> str:
        config = self._config_lookup.by_instance(db, instance_id)
        if config is not None:
            return config.empresa_id

        logger.warning(
            "Nenhuma configuração Evolution API encontrada para instância: %s",
            instance_id,
            extra={"instance": instance_id},
        )
        if self._tenant_fallback:
            empresa_id = self._config_lookup.fallback_empresa_id(db)
            if empresa_id:
                return empresa_id
        raise TenantResolutionError(f"Nenhuma empresa ativa encontrada para a instância {instance_id}")

    def _find_contato(self, db: Session, empresa_id: str, telefone: str) -> Contato | None:
        return (
            db.query(Contato)
            .filter(Contato.empresa_id == empresa_id, Contato.telefone == telefone)
            .first()
        )

    def _find_or_create_contato(self, db: Session, empresa_id: str, event: InboundEvent) -> tuple[Contato, bool]:
        contato = self._find_contato(db, empresa_id, event.phone)
        if contato is not None:
            return contato, False

        logger.info("Criando novo contato para: %s", event.phone)
        contato = Contato(empresa_id=empresa_id, nome=event.sender_display_name, telefone=event.phone)
        try:
            with db.begin_nested():
                db.add(contato)
        except IntegrityError:
            # outra entrega criou o mesmo telefone entre a busca e o insert
            contato = self._find_contato(db, empresa_id, event.phone)
            if contato is None:
                raise
            logger.info("Contato criado em paralelo reaproveitado", extra={"contato_id": contato.id})
            return contato, False
        return contato, True

    def _open_conversas(self, db: Session, contato: Contato) -> list[Conversa]:
        query = db.query(Conversa).filter(
            Conversa.contato_id == contato.id,
            Conversa.status.in_(OPEN_STATUSES),
        )
        if self._open_policy == POLICY_UNIQUE_PER_CHANNEL:
            query = query.filter(Conversa.canal == self._channel)
        return query.order_by(Conversa.updated_at.desc(), Conversa.created_at.desc()).all()

    def _find_or_create_conversa(self, db: Session, contato: Contato) -> tuple[Conversa, bool]:
        abertas = self._open_conversas(db, contato)
        if abertas:
            conversa = abertas[0]
            if self._open_policy == POLICY_UNIQUE_PER_CHANNEL and len(abertas) > 1:
                for duplicada in abertas[1:]:
                    logger.warning(
                        "Encerrando conversa duplicada aberta para o contato",
                        extra={"conversa_id": duplicada.id},
                    )
                    duplicada.status = "encerrado"
                    duplicada.updated_at = utcnow()
            return conversa, False

        logger.info("Criando nova conversa para contato: %s", contato.id)
        conversa = Conversa(
            contato_id=contato.id,
            empresa_id=contato.empresa_id,
            status="ativo",
            canal=self._channel,
            prioridade="normal",
        )
        db.add(conversa)
        db.flush()
        return conversa, True

    def resolve(self, db: Session, event: InboundEvent) -> Resolution:
        """Contato + conversa aberta para o evento; cria o que faltar (no máximo um de cada).

        Só faz flush: quem chama decide o commit, junto com a mensagem recebida.
        """
        empresa_id = self.resolve_empresa_id(db, event.instance_id)
        contato, is_new_contact = self._find_or_create_contato(db, empresa_id, event)
        conversa, is_new_conversation = self._find_or_create_conversa(db, contato)
        return Resolution(
            empresa_id=empresa_id,
            contato_id=contato.id,
            conversa_id=conversa.id,
            is_new_conversation=is_new_conversation,
            is_new_contact=is_new_contact,
        )


def append_inbound_message(db: Session, resolution: Resolution, event: InboundEvent) -> Mensagem:
    mensagem = Mensagem(
        conversa_id=resolution.conversa_id,
        conteudo=event.content,
        remetente_tipo="cliente",
        remetente_nome=event.sender_display_name,
        tipo_mensagem=event.message_kind,
        metadata_=event.metadata(),
    )
    db.add(mensagem)
    conversa = db.get(Conversa, resolution.conversa_id)
    if conversa is not None:
        conversa.updated_at = utcnow()
    db.flush()
    return mensagem
