from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from crmsync.application.two_way_sync.state_keys import load_json, save_json
from crmsync.domain.ports import KeyValueStorePort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    holder_id: str
    acquired_at: float
    ttl_seconds: float

    def is_stale(self, now: float) -> bool:
        return now - self.acquired_at >= self.ttl_seconds

    def to_payload(self) -> dict[str, Any]:
        return {"holder_id": self.holder_id, "acquired_at": self.acquired_at, "ttl": self.ttl_seconds}

    @classmethod
    def from_payload(cls, payload: Any) -> "Lease | None":
        if not isinstance(payload, dict) or not payload.get("holder_id"):
            return None
        try:
            return cls(
                holder_id=str(payload["holder_id"]),
                acquired_at=float(payload.get("acquired_at") or 0.0),
                ttl_seconds=float(payload.get("ttl") or 0.0),
            )
        except (TypeError, ValueError):
            return None


class LeaseManager:
    """Cerrojo explícito con caducidad guardado en el almacén clave-valor.

    Un lease ajeno y vigente bloquea; uno caducado se sobrescribe siempre.
    """

    def __init__(
        self,
        store: KeyValueStorePort,
        holder_id: str,
        *,
        ttl_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._holder_id = holder_id
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def holder_id(self) -> str:
        return self._holder_id

    def current(self, key: str) -> Lease | None:
        return Lease.from_payload(load_json(self._store, key))

    def acquire(self, key: str) -> bool:
        now = self._clock()
        existing = self.current(key)
        if existing is not None and existing.holder_id != self._holder_id and not existing.is_stale(now):
            logger.debug("Lease %s ocupado por %s", key, existing.holder_id)
            return False
        if existing is not None and existing.holder_id != self._holder_id:
            logger.info("Lease caducado de %s sobrescrito en %s", existing.holder_id, key)
        save_json(self._store, key, Lease(self._holder_id, now, self._ttl_seconds).to_payload())
        return True

    def release(self, key: str) -> None:
        existing = self.current(key)
        if existing is None or existing.holder_id == self._holder_id:
            self._store.delete(key)
