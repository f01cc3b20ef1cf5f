"""Node variants for declaring a prompt tree.

A tree is built fresh for every render request out of four variants:

    Leaf          terminal text; role inherited from the nearest ancestor
    Message       terminal text with an explicit role
    Container     ordered children, optionally hard-capped
    PriorityList  ordered children sharing one base priority

Every node may carry a ``prepare`` hook (run asynchronously, siblings
concurrently) and an ``expand`` hook that receives the prepared state and
the node's negotiated budget. Terminal nodes expand to their text, branch
nodes expand to additional children.
"""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Union

if TYPE_CHECKING:
    from promptfit.render.context import RenderContext


class NodeKind(str, Enum):
    """Tag for the closed set of node variants."""

    LEAF = "leaf"
    MESSAGE = "message"
    CONTAINER = "container"
    LIST = "list"


class PruneDirection(str, Enum):
    """Which end of a PriorityList survives longest."""

    KEEP_OLDEST = "keep-oldest"  # Later items are pruned first
    KEEP_NEWEST = "keep-newest"  # Earlier items are pruned first


PrepareHook = Callable[["RenderContext"], Union[Any, Awaitable[Any]]]
ExpandHook = Callable[[Any, "RenderContext"], Union[Any, Awaitable[Any]]]

# Shared across threads; next() on itertools.count is atomic under the GIL.
_declaration_counter = itertools.count()


def _next_order() -> int:
    return next(_declaration_counter)


@dataclass(eq=False, kw_only=True)
class Node:
    """Attributes common to every variant."""

    kind: ClassVar[NodeKind]

    priority: int | None = None  # None = inherit from nearest ancestor
    flex_grow: float = 0
    hard_cap: int | None = None
    size_hint: int | None = None  # Reserved minimum for flexible subtrees
    mandatory: bool | None = None  # None = inherit; mandatory units are never evicted
    key: str | None = None
    prepare: PrepareHook | None = None
    expand: ExpandHook | None = None
    declared_order: int = field(default_factory=_next_order, init=False)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (NodeKind.LEAF, NodeKind.MESSAGE)

    @property
    def label(self) -> str:
        """Short identity used in logs and error messages."""
        return self.key or f"{self.kind.value}#{self.declared_order}"

    def iter_children(self) -> Iterator[Node]:
        return iter(())

    def item_priority(self, index: int, count: int, inherited: int) -> int:
        """Priority handed to the child at `index` when it declares none."""
        return inherited


@dataclass(eq=False)
class Leaf(Node):
    kind: ClassVar[NodeKind] = NodeKind.LEAF

    text: str = ""
    role: str | None = None


@dataclass(eq=False)
class Message(Node):
    kind: ClassVar[NodeKind] = NodeKind.MESSAGE

    role: str = "user"
    text: str = ""


@dataclass(eq=False)
class Container(Node):
    kind: ClassVar[NodeKind] = NodeKind.CONTAINER

    children: list[Node] = field(default_factory=list)
    role: str | None = None

    def iter_children(self) -> Iterator[Node]:
        return iter(self.children)

    def add(self, *nodes: Node) -> Container:
        self.children.extend(nodes)
        return self


@dataclass(eq=False)
class PriorityList(Node):
    """Children flattened individually under one base priority.

    With ``positional`` set, each child's priority steps down by one per
    position, counted from the end that ``prune`` keeps.
    """

    kind: ClassVar[NodeKind] = NodeKind.LIST

    children: list[Node] = field(default_factory=list)
    prune: PruneDirection = PruneDirection.KEEP_OLDEST
    positional: bool = False
    role: str | None = None

    def iter_children(self) -> Iterator[Node]:
        return iter(self.children)

    def add(self, *nodes: Node) -> PriorityList:
        self.children.extend(nodes)
        return self

    def item_priority(self, index: int, count: int, inherited: int) -> int:
        if not self.positional:
            return inherited
        position = index if self.prune == PruneDirection.KEEP_OLDEST else count - 1 - index
        return inherited - position


def walk(root: Node) -> Iterable[Node]:
    """Pre-order walk over the statically declared tree."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(list(node.iter_children())))
