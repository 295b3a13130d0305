from __future__ import annotations

import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable

from suggestion_relay.core.config import LINDY_INFLIGHT_TTL_SECONDS


class InflightGuard(ABC):
    @abstractmethod
    def try_acquire(self, *, business_id: str, question_id: str) -> bool:
        """Marca a geração como em andamento; False se já existe uma ativa."""

    @abstractmethod
    def release(self, *, business_id: str, question_id: str) -> None:
        """Libera o par (callback recebido ou entrega falhou)."""

    @abstractmethod
    def is_active(self, *, business_id: str, question_id: str) -> bool:
        """Indica se há geração ativa para o par."""


class InMemoryInflightGuard(InflightGuard):
    def __init__(self, *, ttl_seconds: float = 120.0, monotonic: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._monotonic = monotonic
        self._started_at: dict[tuple[str, str], float] = {}
        self._lock = Lock()

    def _expired(self, started_at: float) -> bool:
        return self._monotonic() - started_at >= self.ttl_seconds

    def try_acquire(self, *, business_id: str, question_id: str) -> bool:
        key = (business_id, question_id)
        with self._lock:
            started_at = self._started_at.get(key)
            if started_at is not None and not self._expired(started_at):
                return False
            self._started_at[key] = self._monotonic()
            return True

    def release(self, *, business_id: str, question_id: str) -> None:
        with self._lock:
            self._started_at.pop((business_id, question_id), None)

    def is_active(self, *, business_id: str, question_id: str) -> bool:
        with self._lock:
            started_at = self._started_at.get((business_id, question_id))
            return started_at is not None and not self._expired(started_at)


inflight_guard = InMemoryInflightGuard(ttl_seconds=LINDY_INFLIGHT_TTL_SECONDS)
