"""Cooperative cancellation for render requests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from promptfit.exceptions import RenderCancelledError

T = TypeVar("T")


class CancellationToken:
    """A one-shot signal observed at prepare/expand/measure boundaries.

    The engine never times out on its own; callers that want a deadline
    use ``cancel_after``. ``cancel`` must be called from the thread that
    runs the event loop (use ``loop.call_soon_threadsafe(token.cancel)``
    from elsewhere).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "render cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def cancel_after(self, delay: float) -> asyncio.TimerHandle:
        """Schedule cancellation on the running loop after `delay` seconds."""
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self.cancel, f"deadline of {delay}s exceeded")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RenderCancelledError(self.reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it if the token fires first."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if self._event.is_set():
            if not task.done():
                task.cancel()
            raise RenderCancelledError(self.reason)
        return task.result()
