"""Linearize a materialized tree into prunable message units.

Pre-order walk in declaration order. Every terminal node becomes one
MessageUnit whose ``declared_order`` is the walk's running counter, so
orders are strictly increasing in emission order.

Priority is inherited from the nearest ancestor that declares one. A
PriorityList hands its base priority to each child; a positional list
steps it down by one per position, counted from the end it keeps.

Atomic groups: the highest non-root Container whose units all share one
priority and mandatory flag owns those units (``owner_id`` is the
container's declaration order). Units outside any such container own
themselves. Lists never form groups, and a container holding list items
is not a group either: list items are always pruned one by one.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from promptfit.measure.cache import fingerprint
from promptfit.nodes.models import NodeKind
from promptfit.render.materializer import MaterializedNode


@dataclass(frozen=True)
class MessageUnit:
    """The smallest prunable, order-preserving piece of output."""

    role: str
    content: str
    size: int
    priority: int
    declared_order: int
    owner_id: int
    content_id: str
    mandatory: bool = False
    unmeasured: bool = False


@dataclass(frozen=True)
class CapScope:
    """Units [start, end) that belong to a hard-capped subtree."""

    label: str
    cap: int
    start: int
    end: int


@dataclass
class Flattened:
    units: list[MessageUnit] = field(default_factory=list)
    scopes: list[CapScope] = field(default_factory=list)  # innermost first


def flatten(
    tree: MaterializedNode,
    default_priority: int = 0,
    default_role: str = "user",
) -> Flattened:
    """Flatten `tree` into units plus the ranges of its capped subtrees."""
    walker = _Walker()
    walker.visit(
        tree,
        priority=default_priority,
        role=default_role,
        mandatory=False,
        is_root=True,
    )
    return Flattened(units=walker.units, scopes=walker.scopes)


class _Walker:
    def __init__(self) -> None:
        self.units: list[MessageUnit] = []
        self.scopes: list[CapScope] = []
        self._listed: set[int] = set()  # Units emitted under a PriorityList

    def visit(
        self,
        mat: MaterializedNode,
        priority: int,
        role: str,
        mandatory: bool,
        is_root: bool = False,
    ) -> None:
        node = mat.node
        if node.priority is not None:
            priority = node.priority
        if node.mandatory is not None:
            mandatory = node.mandatory
        if getattr(node, "role", None):
            role = node.role

        start = len(self.units)

        if mat.degraded:
            pass
        elif node.is_terminal:
            self.units.append(
                MessageUnit(
                    role=role,
                    content=mat.text,
                    size=mat.size,
                    priority=priority,
                    declared_order=start,
                    owner_id=node.declared_order,
                    content_id=node.key or fingerprint(mat.text)[:16],
                    mandatory=mandatory,
                    unmeasured=mat.unmeasured,
                )
            )
        else:
            count = len(mat.children)
            for index, child in enumerate(mat.children):
                self.visit(child, node.item_priority(index, count, priority), role, mandatory)
            if node.kind == NodeKind.LIST:
                self._listed.update(range(start, len(self.units)))

        end = len(self.units)

        if node.kind == NodeKind.CONTAINER and not is_root and end > start:
            self._group(start, end, node.declared_order)

        if node.hard_cap is not None and end > start:
            self.scopes.append(CapScope(label=node.label, cap=node.hard_cap, start=start, end=end))

    def _group(self, start: int, end: int, owner_id: int) -> None:
        members = self.units[start:end]
        if any(i in self._listed for i in range(start, end)):
            return
        signatures = {(u.priority, u.mandatory) for u in members}
        if len(signatures) != 1:
            return
        # Visited after its descendants, so the outermost uniform container wins.
        for i in range(start, end):
            self.units[i] = replace(self.units[i], owner_id=owner_id)
