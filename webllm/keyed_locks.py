import asyncio
from collections.abc import Hashable


class KeyedLocks:
    """
    One asyncio.Lock per key, created on demand.

    Used wherever a shared map is mutated per provider/account/conversation so
    that unrelated keys never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __call__(self, key: Hashable) -> asyncio.Lock:
        return self.get(key)

    def discard(self, key: Hashable) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["KeyedLocks"]
