"""
Per-provider concurrency gate.

A web chat tab can only run one generation at a time, so each provider
(or provider+account) owns one binary permit. Acquisition never waits: a
caller that cannot take the permit reports the provider as busy.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field

from .logging_config import logger

RELEASE_COMPLETED = "completed"
RELEASE_ERROR = "error"
RELEASE_TIMEOUT = "timeout"
RELEASE_CANCELLED = "cancelled"
RELEASE_LOGIN_REPLY = "login_reply"


@dataclass
class GateTicket:
    """
    Proof of a held permit. `release` may be called from any completion
    path; only the first call frees the permit.
    """

    gate: "ProviderGate"
    key: str
    provider_id: str
    acquired_at: float = field(default_factory=time.monotonic)
    release_reason: str | None = None
    _guard: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self, reason: str = RELEASE_COMPLETED) -> bool:
        with self._guard:
            if self._released:
                return False
            self._released = True
            self.release_reason = reason
        self.gate._free(self, reason)
        return True


class ProviderGate:
    def __init__(self, *, per_account: bool = False) -> None:
        self.per_account = per_account
        self._permits: dict[str, threading.Lock] = {}
        self._registry_guard = threading.Lock()
        self.release_counts: Counter[str] = Counter()

    def _key(self, provider_id: str, account_id: str | None) -> str:
        if self.per_account and account_id:
            return f"{provider_id}:{account_id}"
        return provider_id

    def _permit(self, key: str) -> threading.Lock:
        with self._registry_guard:
            permit = self._permits.get(key)
            if permit is None:
                permit = threading.Lock()
                self._permits[key] = permit
            return permit

    def try_acquire(self, provider_id: str, account_id: str | None = None) -> GateTicket | None:
        key = self._key(provider_id, account_id)
        if not self._permit(key).acquire(blocking=False):
            logger.info("Gate busy for %s", key)
            return None
        logger.debug("Gate acquired for %s", key)
        return GateTicket(gate=self, key=key, provider_id=provider_id)

    def is_busy(self, provider_id: str, account_id: str | None = None) -> bool:
        if self.per_account and account_id is None:
            prefix = f"{provider_id}:"
            with self._registry_guard:
                permits = [
                    lock
                    for key, lock in self._permits.items()
                    if key == provider_id or key.startswith(prefix)
                ]
            return any(lock.locked() for lock in permits)
        return self._permit(self._key(provider_id, account_id)).locked()

    def _free(self, ticket: GateTicket, reason: str) -> None:
        self._permit(ticket.key).release()
        self.release_counts[ticket.key] += 1
        logger.debug(
            "Gate released for %s (reason=%s, held=%.2fs)",
            ticket.key,
            reason,
            time.monotonic() - ticket.acquired_at,
        )


__all__ = [
    "GateTicket",
    "ProviderGate",
    "RELEASE_COMPLETED",
    "RELEASE_ERROR",
    "RELEASE_TIMEOUT",
    "RELEASE_CANCELLED",
    "RELEASE_LOGIN_REPLY",
]
