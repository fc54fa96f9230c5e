from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from relay.chatbot.engine import SESSION_ACTIVE, SESSION_TRANSFERRED
from relay.core.timeutils import utcnow
from relay.errors import ConversationClaimError, SectorFullError
from relay.models.atendimento import Setor, Transferencia
from relay.models.chatbot import ChatbotSession
from relay.models.conversa import Conversa

logger = logging.getLogger(__name__)

DEFAULT_SECTOR_CAPACITY = 10


def _encerrar_sessao_chatbot(db: Session, conversa_id: str) -> None:
    # humano assumiu: a sessão ativa do bot não avança mais
    db.execute(
        update(ChatbotSession)
        .where(ChatbotSession.conversa_id == conversa_id, ChatbotSession.status == SESSION_ACTIVE)
        .values(status=SESSION_TRANSFERRED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def assumir_conversa(db: Session, conversa_id: str, agente_id: str) -> bool:
    """Reivindica a conversa para o agente. Falso se outro agente chegou antes."""
    result = db.execute(
        update(Conversa)
        .where(Conversa.id == conversa_id, Conversa.agente_id.is_(None))
        .values(agente_id=agente_id, status="em-atendimento", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    if claimed:
        _encerrar_sessao_chatbot(db, conversa_id)
    db.commit()
    if claimed:
        logger.info("Conversa assumida pelo agente %s", agente_id, extra={"conversa_id": conversa_id})
    else:
        logger.info("Conversa já estava com outro agente", extra={"conversa_id": conversa_id})
    return claimed


def liberar_conversa(db: Session, conversa_id: str, agente_id: str | None = None) -> bool:
    query = update(Conversa).where(Conversa.id == conversa_id)
    if agente_id:
        query = query.where(Conversa.agente_id == agente_id)
    result = db.execute(
        query.values(agente_id=None, status="aguardando", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def verificar_capacidade_setor(db: Session, empresa_id: str | None, setor_nome: str) -> Setor | None:
    """Levanta SectorFullError quando o setor ativo já está na capacidade máxima."""
    query = db.query(Setor).filter(Setor.nome == setor_nome, Setor.ativo.is_(True))
    if empresa_id:
        query = query.filter(Setor.empresa_id == empresa_id)
    setor = query.first()
    if setor is None:
        return None
    capacidade = setor.capacidade_maxima or DEFAULT_SECTOR_CAPACITY
    if int(setor.atendimentos_ativos or 0) >= capacidade:
        raise SectorFullError(f"Setor {setor_nome} está com capacidade máxima ({capacidade})")
    return setor


def transferir_conversa(
    db: Session,
    conversa_id: str,
    *,
    de_agente_id: str | None,
    para_agente_id: str | None = None,
    setor: str | None = None,
    motivo: str | None = None,
) -> Transferencia:
    conversa = db.get(Conversa, conversa_id)
    if conversa is None:
        raise ConversationClaimError(f"Conversa {conversa_id} não encontrada")
    if setor:
        verificar_capacidade_setor(db, conversa.empresa_id, setor)

    values = {
        "agente_id": para_agente_id,
        "status": "em-atendimento" if para_agente_id else "aguardando",
        "updated_at": utcnow(),
    }
    if setor:
        values["setor"] = setor

    query = update(Conversa).where(Conversa.id == conversa_id)
    if de_agente_id:
        query = query.where(Conversa.agente_id == de_agente_id)
    else:
        query = query.where(Conversa.agente_id.is_(None))
    result = db.execute(query.values(**values).execution_options(synchronize_session=False))
    if result.rowcount != 1:
        db.rollback()
        raise ConversationClaimError("A conversa não pertence mais ao agente de origem")
    _encerrar_sessao_chatbot(db, conversa_id)

    transferencia = Transferencia(
        conversa_id=conversa_id,
        de_agente_id=de_agente_id,
        para_agente_id=para_agente_id,
        motivo=motivo,
        status="concluida",
    )
    db.add(transferencia)
    db.commit()
    db.refresh(transferencia)
    logger.info(
        "Conversa transferida de %s para %s",
        de_agente_id,
        para_agente_id or setor,
        extra={"conversa_id": conversa_id},
    )
    return transferencia
