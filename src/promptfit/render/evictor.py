"""Priority-driven, order-preserving eviction.

Until the units fit the budget, remove the lowest-priority candidate.
Among equal priorities the later-declared unit goes first, so earlier
content is never dropped to save later content of the same priority.
Unmeasurable units go before everything else. Mandatory units are never
candidates; if they alone exceed the budget the outcome is flagged as
unsatisfiable rather than raised.

Survivors keep their original relative order; nothing is reordered.
This module is pure and synchronous.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from promptfit.config import EvictionGranularity
from promptfit.render.flatten import MessageUnit

logger = logging.getLogger("promptfit.render")


@dataclass
class EvictionOutcome:
    kept: list[MessageUnit]
    evicted: list[MessageUnit] = field(default_factory=list)  # In removal order
    total: int = 0
    budget: int = 0
    unsatisfiable: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.evicted)


def eviction_order(units: Sequence[MessageUnit]) -> list[int]:
    """Indices of eviction candidates, first to go first."""
    candidates = [i for i, unit in enumerate(units) if not unit.mandatory]
    return sorted(
        candidates,
        key=lambda i: (not units[i].unmeasured, units[i].priority, -units[i].declared_order),
    )


def evict(
    units: Sequence[MessageUnit],
    budget: int,
    granularity: EvictionGranularity = EvictionGranularity.UNIT,
) -> EvictionOutcome:
    """Return the order-preserving subsequence of `units` that fits `budget`."""
    total = sum(unit.size for unit in units)
    if total <= budget:
        return EvictionOutcome(kept=list(units), total=total, budget=budget)

    groups: dict[int, list[int]] = {}
    if granularity == EvictionGranularity.GROUP:
        for i, unit in enumerate(units):
            groups.setdefault(unit.owner_id, []).append(i)

    removed: set[int] = set()
    evicted: list[MessageUnit] = []

    for i in eviction_order(units):
        if total <= budget:
            break
        if i in removed:
            continue

        if granularity == EvictionGranularity.GROUP:
            victims = [j for j in groups[units[i].owner_id] if j not in removed and not units[j].mandatory]
        else:
            victims = [i]

        freed = sum(units[j].size for j in victims)
        if freed <= 0:
            # Dropping zero-size content never helps.
            continue

        for j in victims:
            removed.add(j)
            evicted.append(units[j])
        total -= freed
        logger.debug(
            f"Evicted {len(victims)} unit(s) at priority {units[i].priority} "
            f"(freed {freed}, total now {total}/{budget})"
        )

    kept = [unit for i, unit in enumerate(units) if i not in removed]
    unsatisfiable = total > budget
    return EvictionOutcome(
        kept=kept,
        evicted=evicted,
        total=total,
        budget=budget,
        unsatisfiable=unsatisfiable,
    )
