"""Two-phase (prepare, expand) materialization of a node tree.

For every branch node:

  1. ``prepare`` runs for all of its children concurrently and is joined
     before any child expands.
  2. Children with ``flex_grow == 0`` are built first, with the parent's
     budget clipped to their own hard cap. Their measured size becomes
     their reserved minimum.
  3. Flexible children reserve ``size_hint`` (or nothing), the sizing
     negotiator hands out the surplus, and the flexible children are built
     within their allotment.

Terminal nodes are measured as soon as their text is known. Hooks see a
RenderContext whose ``budget`` is the upper bound during ``prepare`` and
the negotiated allotment during ``expand``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from promptfit.cancellation import CancellationToken
from promptfit.config import FailureIsolation, MeasurementFailurePolicy, RenderConfig
from promptfit.exceptions import (
    HookError,
    InvalidTreeError,
    MeasurementError,
    RenderCancelledError,
)
from promptfit.measure.measurer import CachedMeasurer
from promptfit.nodes.models import Node, NodeKind
from promptfit.nodes.validate import validate_tree
from promptfit.render.context import RenderContext
from promptfit.render.sizing import SizingRequest, negotiate

logger = logging.getLogger("promptfit.render")

T = TypeVar("T")

# Errors that always abort the request, whatever the isolation setting.
_FATAL = (
    RenderCancelledError,
    InvalidTreeError,
    MeasurementError,
    HookError,
    asyncio.CancelledError,
)


class _Failed:
    """Prepared state of a node whose prepare hook failed under isolation."""

    def __init__(self, error: Exception) -> None:
        self.error = error


@dataclass(eq=False)
class MaterializedNode:
    """A node after expansion: final text, size and children."""

    node: Node
    budget: int
    text: str = ""
    size: int = 0
    unmeasured: bool = False
    degraded: bool = False
    children: list[MaterializedNode] = field(default_factory=list)

    @property
    def kind(self) -> NodeKind:
        return self.node.kind

    @property
    def total_size(self) -> int:
        if self.node.is_terminal:
            return self.size
        return sum(child.total_size for child in self.children)

    @property
    def measured_size(self) -> int:
        """Total size leaving out content that could not be measured."""
        if self.node.is_terminal:
            return 0 if self.unmeasured else self.size
        return sum(child.measured_size for child in self.children)


class Materializer:
    """Expands one request's tree under a shared cancellation token."""

    def __init__(
        self,
        measurer: CachedMeasurer,
        token: CancellationToken,
        config: RenderConfig | None = None,
    ) -> None:
        self.measurer = measurer
        self.token = token
        self.config = config or RenderConfig()
        self.degraded: list[tuple[int, str]] = []
        self._seen: set[int] = set()
        self._root_budget = 0

    async def materialize(self, root: Node, budget: int) -> MaterializedNode:
        """Build the full tree for `root` within `budget`.

        Raises:
            InvalidTreeError: Before any hook runs, if the declared tree is
                malformed; later, if an expansion yields a malformed subtree.
            RenderCancelledError: If the token fires before completion.
            MeasurementError: Under the propagate policy.
        """
        validate_tree(root, budget, self.config.max_depth, seen=self._seen)
        self._root_budget = budget
        self.token.raise_if_cancelled()

        root_budget = _clip(budget, root.hard_cap)
        (state,) = await self._prepare_all([root], root_budget, depth=0)
        return await self._build(
            root, state, root_budget, depth=0, mandatory=False,
            priority=self.config.default_priority,
        )

    # -------------------------------------------------------------------
    # Phase 1: prepare
    # -------------------------------------------------------------------

    async def _prepare_all(
        self, nodes: list[Node], parent_budget: int, depth: int
    ) -> list[Any]:
        """Run prepare hooks of siblings concurrently and join them."""
        return await _join(
            [self._prepare(node, _clip(parent_budget, node.hard_cap), depth) for node in nodes]
        )

    async def _prepare(self, node: Node, budget: int, depth: int) -> Any:
        if node.prepare is None:
            return None
        ctx = self._context(node, budget, depth)
        try:
            return await self._call(node.prepare, ctx)
        except _FATAL:
            raise
        except Exception as e:
            if self.config.failure_isolation != FailureIsolation.SUBTREE:
                raise HookError(node.label, "prepare", e) from e
            return _Failed(e)

    # -------------------------------------------------------------------
    # Phase 2: expand
    # -------------------------------------------------------------------

    async def _build(
        self, node: Node, state: Any, budget: int, depth: int, mandatory: bool,
        priority: int,
    ) -> MaterializedNode:
        if node.mandatory is not None:
            mandatory = node.mandatory
        if node.priority is not None:
            priority = node.priority

        if isinstance(state, _Failed):
            return self._degrade(node, budget, state.error, "prepare")

        try:
            if node.is_terminal:
                return await self._build_terminal(node, state, budget, depth, mandatory)
            return await self._build_branch(node, state, budget, depth, mandatory, priority)
        except _FATAL:
            raise
        except Exception as e:
            if self.config.failure_isolation != FailureIsolation.SUBTREE:
                raise HookError(node.label, "expand", e) from e
            return self._degrade(node, budget, e, "expand")

    async def _build_terminal(
        self, node: Node, state: Any, budget: int, depth: int, mandatory: bool
    ) -> MaterializedNode:
        text = node.text
        if node.expand is not None:
            produced = await self._call(node.expand, state, self._context(node, budget, depth))
            if produced is not None:
                if not isinstance(produced, str):
                    raise InvalidTreeError(
                        f"expand of {node.kind.value} '{node.label}' must return text, "
                        f"got {type(produced).__name__}"
                    )
                text = produced

        size, unmeasured = await self._measure(node, text, mandatory)
        return MaterializedNode(
            node=node, budget=budget, text=text, size=size, unmeasured=unmeasured
        )

    async def _build_branch(
        self, node: Node, state: Any, budget: int, depth: int, mandatory: bool,
        priority: int,
    ) -> MaterializedNode:
        children = list(node.iter_children())
        if node.expand is not None:
            produced = await self._call(node.expand, state, self._context(node, budget, depth))
            children.extend(self._accept_expanded(node, produced, budget, depth))

        if not children:
            return MaterializedNode(node=node, budget=budget)

        states = await self._prepare_all(children, budget, depth + 1)
        inherited = [node.item_priority(i, len(children), priority) for i in range(len(children))]

        built: list[MaterializedNode | None] = [None] * len(children)
        fixed = [i for i, child in enumerate(children) if child.flex_grow == 0]
        flexible = [i for i, child in enumerate(children) if child.flex_grow > 0]

        fixed_results = await _join([
            self._build(
                children[i], states[i], _clip(budget, children[i].hard_cap),
                depth + 1, mandatory, inherited[i],
            )
            for i in fixed
        ])
        for i, result in zip(fixed, fixed_results):
            built[i] = result

        if flexible:
            requests = []
            for i, child in enumerate(children):
                if i in flexible:
                    minimum = child.size_hint or 0
                else:
                    # Unmeasurable content is evicted later and reserves nothing.
                    minimum = built[i].measured_size
                requests.append(
                    SizingRequest(
                        minimum=minimum,
                        flex_grow=child.flex_grow,
                        hard_cap=child.hard_cap,
                        priority=child.priority if child.priority is not None else inherited[i],
                        order=child.declared_order,
                    )
                )
            allotments = negotiate(budget, requests)
            flex_results = await _join([
                self._build(
                    children[i], states[i], _clip(allotments[i], children[i].hard_cap),
                    depth + 1, mandatory, inherited[i],
                )
                for i in flexible
            ])
            for i, result in zip(flexible, flex_results):
                built[i] = result

        return MaterializedNode(node=node, budget=budget, children=built)

    def _accept_expanded(
        self, parent: Node, produced: Any, budget: int, depth: int
    ) -> list[Node]:
        """Validate children yielded by an expand hook."""
        if produced is None:
            return []
        if isinstance(produced, Node):
            produced = [produced]
        if isinstance(produced, (str, bytes)) or not isinstance(produced, Iterable):
            raise InvalidTreeError(
                f"expand of '{parent.label}' must return nodes, got {type(produced).__name__}"
            )
        nodes = list(produced)
        inherited = _clip(budget, parent.hard_cap)
        for child in nodes:
            if not isinstance(child, Node):
                raise InvalidTreeError(
                    f"expand of '{parent.label}' returned a non-node: {child!r}"
                )
            validate_tree(
                child,
                inherited,
                self.config.max_depth,
                seen=self._seen,
                base_depth=depth + 1,
            )
        return nodes

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    async def _measure(self, node: Node, text: str, mandatory: bool) -> tuple[int, bool]:
        try:
            return await self.measurer.measure(text, node.label), False
        except MeasurementError as e:
            if mandatory or self.config.measurement_failure != MeasurementFailurePolicy.EVICT:
                raise
            logger.warning(f"Treating '{node.label}' as unmeasurable: {e.cause}")
            # Larger than the whole budget, so it can never survive eviction.
            return self._root_budget + 1, True

    async def _call(self, hook, *args: Any) -> Any:
        self.token.raise_if_cancelled()
        result = hook(*args)
        if inspect.isawaitable(result):
            result = await self.token.run(result)
        self.token.raise_if_cancelled()
        return result

    def _context(self, node: Node, budget: int, depth: int) -> RenderContext:
        return RenderContext(
            node=node, budget=budget, depth=depth, token=self.token, measurer=self.measurer
        )

    def _degrade(self, node: Node, budget: int, error: Exception, phase: str) -> MaterializedNode:
        logger.warning(f"{phase} failed for '{node.label}', dropping its subtree: {error}")
        self.degraded.append((node.declared_order, node.label))
        return MaterializedNode(node=node, budget=budget, degraded=True)


def _clip(budget: int, hard_cap: int | None) -> int:
    return budget if hard_cap is None else min(budget, hard_cap)


async def _join(coros: list[Awaitable[T]]) -> list[T]:
    """Run coroutines concurrently; results in input order.

    The first failure cancels the remaining siblings and is re-raised.
    """
    if not coros:
        return []
    if len(coros) == 1:
        return [await coros[0]]

    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if task.done() and not task.cancelled():
            error = task.exception()
            if error is not None:
                raise error
    return [task.result() for task in tasks]
