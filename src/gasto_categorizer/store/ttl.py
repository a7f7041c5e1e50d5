import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from gasto_categorizer.domain.timefmt import utcnow

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class _Slot(Generic[V]):
    value: V
    expires_at: dt.datetime


class TTLCache(Generic[K, V]):
    """Key/value store whose entries carry their own expiry.

    Expired entries are dropped lazily on read and swept opportunistically
    on every write.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], dt.datetime] = utcnow) -> None:
        self.ttl = dt.timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._slots: dict[K, _Slot[V]] = {}

    def now(self) -> dt.datetime:
        return self._clock()

    def set(self, key: K, value: V) -> dt.datetime:
        now = self._clock()
        self.sweep(now)
        expires_at = now + self.ttl
        self._slots[key] = _Slot(value=value, expires_at=expires_at)
        return expires_at

    def peek(self, key: K) -> tuple[V, bool] | None:
        """Return ``(value, expired)`` without evicting, or None when absent."""
        slot = self._slots.get(key)
        if slot is None:
            return None
        return slot.value, self._clock() >= slot.expires_at

    def get(self, key: K) -> V | None:
        slot = self._slots.get(key)
        if slot is None:
            return None
        if self._clock() >= slot.expires_at:
            del self._slots[key]
            return None
        return slot.value

    def delete(self, key: K) -> bool:
        return self._slots.pop(key, None) is not None

    def sweep(self, now: dt.datetime | None = None) -> int:
        current = now or self._clock()
        expired = [key for key, slot in self._slots.items() if current >= slot.expires_at]
        for key in expired:
            del self._slots[key]
        return len(expired)

    def values(self) -> list[V]:
        now = self._clock()
        return [slot.value for slot in self._slots.values() if now < slot.expires_at]

    def clear(self) -> None:
        self._slots.clear()

    def __len__(self) -> int:
        return len(self._slots)
