"""Measurer capability and the per-request cached facade."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
import weakref
from collections.abc import Awaitable, Callable
from typing import Protocol, Union, runtime_checkable

from promptfit.cancellation import CancellationToken
from promptfit.exceptions import MeasurementError, RenderCancelledError
from promptfit.measure.cache import SizeCache, fingerprint

MeasureFn = Callable[[str], Union[int, Awaitable[int]]]

# Unnamed measurers get a serial that lives exactly as long as they do.
_serials: weakref.WeakKeyDictionary[object, int] = weakref.WeakKeyDictionary()
_next_serial = itertools.count(1)
_serials_lock = threading.Lock()


@runtime_checkable
class Measurer(Protocol):
    """Anything that can size a piece of content, sync or async."""

    def measure(self, content: str) -> int | Awaitable[int]:
        ...


class CharRatioMeasurer:
    """Estimate token counts from character length."""

    # Rough heuristic: 1 token ≈ 4 characters
    def __init__(self, chars_per_token: float = 4.0) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    @property
    def name(self) -> str:
        return f"char-ratio:{self.chars_per_token}"

    def measure(self, content: str) -> int:
        if not content:
            return 0
        return max(1, int(len(content) / self.chars_per_token))


def _measure_fn(measurer: Measurer | MeasureFn) -> MeasureFn:
    if isinstance(measurer, Measurer):
        return measurer.measure
    if callable(measurer):
        return measurer
    raise TypeError(f"Not a measurer: {measurer!r}")


def measurer_namespace(measurer: Measurer | MeasureFn) -> str:
    """Cache namespace so different measurers never share entries.

    A measurer with a ``name`` is trusted to mean the same sizing wherever
    that name appears. Anything else is namespaced per object, so two
    lambdas never collide, even when one is created after the other has
    been collected. Bound methods share the namespace of their instance.
    """
    name = getattr(measurer, "name", None)
    if isinstance(name, str) and name:
        return name
    qualname = getattr(measurer, "__qualname__", type(measurer).__qualname__)
    owner = getattr(measurer, "__self__", measurer)
    with _serials_lock:
        try:
            serial = _serials.get(owner)
            if serial is None:
                serial = _serials[owner] = next(_next_serial)
        except TypeError:
            # Not weakly referenceable or not hashable.
            return f"{qualname}@{id(owner):x}"
    return f"{qualname}#{serial}"


class CachedMeasurer:
    """Measures content through a shared SizeCache for one request.

    Counts the request's own hits and misses; the shared cache keeps the
    process-wide totals.
    """

    def __init__(
        self,
        measurer: Measurer | MeasureFn,
        cache: SizeCache | None = None,
        token: CancellationToken | None = None,
        namespace: str | None = None,
    ) -> None:
        self._fn = _measure_fn(measurer)
        self.cache = cache
        self.token = token
        self.namespace = namespace if namespace is not None else measurer_namespace(measurer)
        self.hits = 0
        self.misses = 0

    async def measure(self, content: str, content_id: str = "") -> int:
        """Size of `content`, raising MeasurementError on failure."""
        if self.token is not None:
            self.token.raise_if_cancelled()

        content_id = content_id or fingerprint(content)[:16]

        if self.cache is None:
            self.misses += 1
            return await self._compute(content, content_id)

        key = fingerprint(content, self.namespace)
        lookup = self.cache.get_or_measure(key, lambda: self._compute(content, content_id))
        if self.token is not None:
            # Waiting on another request's measurement must still honor ours.
            lookup = self.token.run(lookup)
        size, hit = await lookup
        if hit:
            self.hits += 1
        else:
            self.misses += 1
        return size

    async def _compute(self, content: str, content_id: str) -> int:
        if self.token is not None:
            self.token.raise_if_cancelled()
        try:
            result = self._fn(content)
            if inspect.isawaitable(result):
                if self.token is not None:
                    result = await self.token.run(result)
                else:
                    result = await result
        except (asyncio.CancelledError, MeasurementError, RenderCancelledError):
            raise
        except Exception as e:
            raise MeasurementError(content_id, e) from e

        if isinstance(result, bool) or not isinstance(result, int) or result < 0:
            raise MeasurementError(
                content_id, f"measurer returned {result!r}, expected a non-negative int"
            )
        return result
