from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from relay.core.config import (
    QUEUE_BACKOFF_BASE_SECONDS,
    QUEUE_BACKOFF_FACTOR,
    QUEUE_BACKOFF_MAX_SECONDS,
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Atraso exponencial entre tentativas: base * factor^(n-1), limitado a max_seconds."""

    base_seconds: float = QUEUE_BACKOFF_BASE_SECONDS
    factor: float = QUEUE_BACKOFF_FACTOR
    max_seconds: float = QUEUE_BACKOFF_MAX_SECONDS

    def delay(self, retry_count: int) -> timedelta:
        if retry_count <= 0:
            return timedelta(0)
        seconds = self.base_seconds * (self.factor ** (retry_count - 1))
        return timedelta(seconds=min(seconds, self.max_seconds))


default_backoff = BackoffPolicy()
