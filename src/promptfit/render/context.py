"""Per-node view of a render request, handed to prepare/expand hooks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from promptfit.cancellation import CancellationToken
from promptfit.measure.measurer import CachedMeasurer

if TYPE_CHECKING:
    from promptfit.nodes.models import Node


@dataclass(frozen=True)
class RenderContext:
    """What a hook may know about its node's place in the request."""

    node: Node
    budget: int
    depth: int
    token: CancellationToken
    measurer: CachedMeasurer

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def check(self) -> None:
        """Raise RenderCancelledError if the request was cancelled."""
        self.token.raise_if_cancelled()

    async def measure(self, content: str) -> int:
        """Measure content through the request's cached measurer."""
        return await self.measurer.measure(content)
