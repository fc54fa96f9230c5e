from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from relay.errors import ProviderConfigNotFoundError
from relay.models.empresa import Empresa
from relay.models.evolution_api_config import EvolutionApiConfig

logger = logging.getLogger(__name__)


class EvolutionConfigLookup:
    """Consulta a configuração da Evolution API por instância ou por empresa.

    Somente leitura: o relay nunca altera evolution_api_config.
    """

    def by_instance(self, db: Session, instance_name: str) -> EvolutionApiConfig | None:
        if not instance_name:
            return None
        return (
            db.query(EvolutionApiConfig)
            .filter(
                EvolutionApiConfig.instance_name == instance_name,
                EvolutionApiConfig.ativo.is_(True),
            )
            .order_by(EvolutionApiConfig.updated_at.desc())
            .first()
        )

    def by_empresa(self, db: Session, empresa_id: str) -> EvolutionApiConfig | None:
        if not empresa_id:
            return None
        return (
            db.query(EvolutionApiConfig)
            .filter(
                EvolutionApiConfig.empresa_id == empresa_id,
                EvolutionApiConfig.ativo.is_(True),
            )
            .order_by(EvolutionApiConfig.updated_at.desc())
            .first()
        )

    def require(
        self,
        db: Session,
        *,
        instance_name: str | None = None,
        empresa_id: str | None = None,
    ) -> EvolutionApiConfig:
        if instance_name:
            config = self.by_instance(db, instance_name)
            if config is None:
                raise ProviderConfigNotFoundError(
                    f"Configuração Evolution API não encontrada para instância: {instance_name}"
                )
            return config
        if empresa_id:
            config = self.by_empresa(db, empresa_id)
            if config is None:
                raise ProviderConfigNotFoundError(
                    f"Configuração Evolution API não encontrada para empresa: {empresa_id}"
                )
            return config
        raise ProviderConfigNotFoundError("instanceName ou empresaId é obrigatório")

    def fallback_empresa_id(self, db: Session) -> str | None:
        empresa = (
            db.query(Empresa)
            .filter(Empresa.ativo.is_(True))
            .order_by(Empresa.created_at.asc())
            .first()
        )
        return empresa.id if empresa else None
