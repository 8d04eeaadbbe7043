import time
import typing
from collections.abc import Awaitable, Callable

import structlog

from skywatch.models import Coordinates, UnitPreference

logger = structlog.get_logger("Cache")

T = typing.TypeVar("T")

CacheKey = tuple[str, str, str]


def make_key(endpoint: str, where: Coordinates | str, unit: UnitPreference | None = None) -> CacheKey:
    """(endpoint, place, unit). Coordinates are keyed at the precision supplied."""
    if isinstance(where, Coordinates):
        place = f"{where.latitude!r},{where.longitude!r}"
    else:
        place = " ".join(where.lower().split())
    return (endpoint, place, UnitPreference(unit).value if unit is not None else "-")


class ResponseCache:
    """
    Short-lived in-memory memoization of successful responses.

    Errors are never stored: ``get_or_fetch`` only writes after the fetch
    returns. Concurrent writers for one key are last-writer-wins. Expired
    entries are swept from ``set`` at most once per TTL window.
    """

    def __init__(self, ttl: float = 600, time_func: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._time_func = time_func
        self._storage: dict[CacheKey, tuple[float, typing.Any]] = {}
        self._next_sweep = time_func() + ttl

    def get(self, key: CacheKey) -> typing.Any | None:
        item = self._storage.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= self._time_func():
            self._storage.pop(key, None)
            return None
        return value

    def set(self, key: CacheKey, value: typing.Any) -> None:
        if self.ttl <= 0:
            return
        now = self._time_func()
        if now >= self._next_sweep:
            purged = self.purge_expired()
            self._next_sweep = now + self.ttl
            if purged:
                logger.debug("Cache swept", purged=purged, remaining=len(self._storage))
        self._storage[key] = (now + self.ttl, value)

    async def get_or_fetch(self, key: CacheKey, fetch: Callable[[], Awaitable[T]]) -> T:
        cached = self.get(key)
        if cached is not None:
            logger.debug("Cache hit", key=key)
            return typing.cast(T, cached)
        logger.debug("Cache miss", key=key)
        value = await fetch()
        self.set(key, value)
        return value

    def purge_expired(self) -> int:
        now = self._time_func()
        expired = [k for k, (expires_at, _) in self._storage.items() if expires_at <= now]
        for k in expired:
            del self._storage[k]
        return len(expired)

    def clear(self) -> None:
        self._storage.clear()

    def __len__(self) -> int:
        return len(self._storage)
