import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Thread-safe in-memory cache with a fixed time-to-live per entry.

    Keys built with `key()` embed the current generation. `invalidate()` bumps
    the generation and drops every stored entry, so a value computed before an
    invalidation can never be served after it, even if it is stored late.
    A TTL of zero disables caching.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def key(self, *parts: Any) -> str:
        """Join key parts and prefix them with the current generation."""
        rendered = ":".join("" if part is None else str(part) for part in parts)
        return f"g{self.generation}:{rendered}"

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        now = self._clock()
        with self._lock:
            expired = [k for k, (at, _) in self._entries.items() if now >= at]
            for stale in expired:
                del self._entries[stale]
            self._entries[key] = (now + self.ttl_seconds, value)

    def invalidate(self) -> int:
        """Start a new generation and drop all entries; returns the new generation."""
        with self._lock:
            self._generation += 1
            dropped = len(self._entries)
            self._entries.clear()
            generation = self._generation
        logger.info(
            "Report cache invalidated (generation %d, %d entries dropped)",
            generation,
            dropped,
        )
        return generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
