from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from relay.core.database import get_db
from relay.deps import require_internal_token
from relay.errors import ConversationClaimError, SectorFullError
from relay.models.conversa import Conversa
from relay.services.atendimento import assumir_conversa, liberar_conversa, transferir_conversa

router = APIRouter(prefix="/api/conversas", tags=["conversas"], dependencies=[Depends(require_internal_token)])


class AssumirRequest(BaseModel):
    agente_id: str = Field(..., min_length=1)


class LiberarRequest(BaseModel):
    agente_id: Optional[str] = None


class TransferirRequest(BaseModel):
    de_agente_id: Optional[str] = None
    para_agente_id: Optional[str] = None
    setor: Optional[str] = None
    motivo: Optional[str] = None


def _get_conversa_or_404(db: Session, conversa_id: str) -> Conversa:
    conversa = db.get(Conversa, conversa_id)
    if conversa is None:
        raise HTTPException(status_code=404, detail="Conversa não encontrada")
    return conversa


@router.post("/{conversa_id}/assumir")
def assumir(conversa_id: str, body: AssumirRequest, db: Session = Depends(get_db)):
    _get_conversa_or_404(db, conversa_id)
    if not assumir_conversa(db, conversa_id, body.agente_id):
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": "Conversa já está sendo atendida por outro agente"},
        )
    return {"success": True, "conversaId": conversa_id, "agenteId": body.agente_id}


@router.post("/{conversa_id}/liberar")
def liberar(conversa_id: str, body: LiberarRequest, db: Session = Depends(get_db)):
    _get_conversa_or_404(db, conversa_id)
    if not liberar_conversa(db, conversa_id, body.agente_id):
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": "Conversa não pertence ao agente informado"},
        )
    return {"success": True, "conversaId": conversa_id, "status": "aguardando"}


@router.post("/{conversa_id}/transferir")
def transferir(conversa_id: str, body: TransferirRequest, db: Session = Depends(get_db)):
    _get_conversa_or_404(db, conversa_id)
    if not (body.para_agente_id or body.setor):
        raise HTTPException(status_code=400, detail="Informe para_agente_id ou setor")
    try:
        transferencia = transferir_conversa(
            db,
            conversa_id,
            de_agente_id=body.de_agente_id,
            para_agente_id=body.para_agente_id,
            setor=body.setor,
            motivo=body.motivo,
        )
    except (ConversationClaimError, SectorFullError) as exc:
        return JSONResponse(status_code=409, content={"success": False, "error": str(exc)})
    return {"success": True, "conversaId": conversa_id, "transferenciaId": transferencia.id}
