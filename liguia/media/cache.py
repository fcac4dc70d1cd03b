from __future__ import annotations

import os
import time
from collections import OrderedDict
from typing import Callable, Optional

DEFAULT_MAX_ENTRIES = 5000
DEFAULT_TTL_S = 86400.0


class MediaUrlCache:
    """Mapa URL original -> URL resolvida, com limite de entradas (LRU) e TTL.

    Usado só a partir do event loop; nenhuma operação faz await, então não
    precisa de lock.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_s: float = DEFAULT_TTL_S,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_entries = max(1, int(max_entries))
        self._ttl_s = float(ttl_s)
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[str, float]]" = OrderedDict()

    @classmethod
    def from_env(cls) -> "MediaUrlCache":
        return cls(
            max_entries=_env_int("MEDIA_CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES),
            ttl_s=_env_float("MEDIA_CACHE_TTL_S", DEFAULT_TTL_S),
        )

    def get(self, key: str) -> Optional[str]:
        item = self._entries.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._ttl_s > 0 and self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: str) -> None:
        self._entries[key] = (value, self._clock() + self._ttl_s)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default
