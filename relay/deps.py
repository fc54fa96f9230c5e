from __future__ import annotations

import logging

from fastapi import Header, HTTPException, status

from relay.core.config import IS_PROD, INTERNAL_API_TOKEN

logger = logging.getLogger(__name__)


def require_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    """Protege as rotas internas (fila, envio, atendimento) com X-Internal-Token."""
    configured = (INTERNAL_API_TOKEN or "").strip()
    incoming = (x_internal_token or "").strip()
    if not configured:
        if IS_PROD:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rotas internas em produção requerem INTERNAL_API_TOKEN configurado",
            )
        return
    if incoming != configured:
        logger.warning("Token interno inválido")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")
