"""Process-wide size cache with LRU eviction and single-flight lookups.

Sizes are keyed by a content fingerprint. Concurrent lookups for the same
missing key share one underlying measurement: the first caller measures,
later callers wait on the same future. Futures are
``concurrent.futures.Future`` so waiters may live on any event loop or
thread. The lock only guards the bookkeeping and is never held across an
await.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from concurrent.futures import Future

from promptfit.exceptions import RenderCancelledError

logger = logging.getLogger("promptfit.measure")


def fingerprint(content: str, namespace: str = "") -> str:
    """Stable cache key for a piece of content."""
    digest = hashlib.sha256(content.encode("utf-8", errors="surrogatepass")).hexdigest()
    return f"{namespace}:{digest}" if namespace else digest


class SizeCache:
    """Bounded LRU mapping from fingerprint to measured size."""

    def __init__(self, capacity: int = 4096) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[str, int] = OrderedDict()
        self._inflight: dict[str, Future] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: str) -> int | None:
        """Look up a size without measuring. Refreshes recency on hit."""
        with self._lock:
            size = self._entries.get(key)
            if size is not None:
                self._entries.move_to_end(key)
            return size

    def put(self, key: str, size: int) -> None:
        with self._lock:
            self._store(key, size)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "hits": self.hits,
                "misses": self.misses,
                "entries": len(self._entries),
                "inflight": len(self._inflight),
                "capacity": self.capacity,
            }

    async def get_or_measure(
        self, key: str, compute: Callable[[], Awaitable[int]]
    ) -> tuple[int, bool]:
        """Return ``(size, hit)`` for `key`, measuring at most once.

        ``hit`` is False only for the caller that ran `compute`. Failures
        are delivered to every waiter and are not cached.
        """
        while True:
            with self._lock:
                size = self._entries.get(key)
                if size is not None:
                    self._entries.move_to_end(key)
                    self.hits += 1
                    return size, True

                pending = self._inflight.get(key)
                leader = pending is None
                if leader:
                    pending = Future()
                    self._inflight[key] = pending
                    self.misses += 1

            if not leader:
                try:
                    size = await asyncio.shield(asyncio.wrap_future(pending))
                except asyncio.CancelledError:
                    if pending.cancelled():
                        # The measuring caller was abandoned; take over.
                        continue
                    raise
                with self._lock:
                    self.hits += 1
                return size, True

            try:
                size = await compute()
            except (asyncio.CancelledError, RenderCancelledError):
                # Abandoned by its own request; other waiters retry.
                with self._lock:
                    self._inflight.pop(key, None)
                pending.cancel()
                raise
            except BaseException as e:
                with self._lock:
                    self._inflight.pop(key, None)
                pending.set_exception(e)
                raise

            with self._lock:
                self._store(key, size)
                self._inflight.pop(key, None)
            pending.set_result(size)
            return size, False

    def _store(self, key: str, size: int) -> None:
        self._entries[key] = size
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Size cache full, dropped {evicted[:24]}")
