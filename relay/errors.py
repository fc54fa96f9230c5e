from __future__ import annotations


class RelayError(Exception):
    """Base de todos os erros do relay."""


class TenantResolutionError(RelayError):
    """Nenhuma empresa ativa para a instância do webhook."""


class ProviderConfigNotFoundError(RelayError):
    pass


class OutboundValidationError(RelayError):
    """Mensagem de saída rejeitada antes de qualquer chamada HTTP."""


class DispatchError(RelayError):
    def __init__(self, message: str, *, status_code: int | None = None, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class FlowIntegrityError(RelayError):
    """Referência quebrada no grafo do fluxo (node/option inexistente)."""


class ConversationClaimError(RelayError):
    pass


class SectorFullError(RelayError):
    pass
