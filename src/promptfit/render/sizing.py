"""Budget negotiation between sibling subtrees ("water-filling").

Given a container budget B and its children, each child first reserves its
minimum. The surplus ``B - Σ min`` is shared among flexible children in
proportion to ``flex_grow``. Children whose share would exceed their hard
cap are clipped and the freed surplus is shared again among the rest,
until no share exceeds a cap.

Shares are computed with exact fractions and rounded once at the end:
each flexible share is floored, then the leftover whole units go one at a
time to flexible children that still have cap room, highest priority
first, earliest declared first among equal priorities.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from fractions import Fraction

logger = logging.getLogger("promptfit.render")


@dataclass(frozen=True)
class SizingRequest:
    """What one child asks of its parent's budget."""

    minimum: int = 0
    flex_grow: float = 0
    hard_cap: int | None = None
    priority: int = 0
    order: int = 0

    @property
    def reserved(self) -> int:
        if self.hard_cap is not None:
            return min(self.minimum, self.hard_cap)
        return self.minimum

    def room(self, allotted: Fraction | int) -> Fraction | None:
        """Cap headroom left above `allotted`, or None when uncapped."""
        if self.hard_cap is None:
            return None
        return Fraction(self.hard_cap) - allotted


def negotiate(budget: int, children: Sequence[SizingRequest]) -> list[int]:
    """Return the budget each child may attempt to use, in input order."""
    if budget < 0:
        raise ValueError(f"budget must be non-negative, got {budget}")

    allotments = [child.reserved for child in children]
    surplus = budget - sum(allotments)
    if surplus <= 0:
        # Oversubscribed: minimums only, eviction settles the rest later.
        return allotments

    shares: dict[int, Fraction] = {}
    active = {
        i for i, child in enumerate(children)
        if child.flex_grow > 0 and (child.room(allotments[i]) is None or child.room(allotments[i]) > 0)
    }
    for i in active:
        shares[i] = Fraction(0)

    remaining = Fraction(surplus)
    while active and remaining > 0:
        weight = sum(Fraction(children[i].flex_grow) for i in active)
        clipped = []
        for i in sorted(active):
            child = children[i]
            share = remaining * Fraction(child.flex_grow) / weight
            room = child.room(allotments[i] + shares[i])
            if room is not None and share > room:
                clipped.append((i, room))

        if not clipped:
            for i in active:
                shares[i] += remaining * Fraction(children[i].flex_grow) / weight
            remaining = Fraction(0)
            break

        for i, room in clipped:
            shares[i] += room
            remaining -= room
            active.discard(i)

    distributed = Fraction(surplus) - remaining
    for i, share in shares.items():
        allotments[i] += math.floor(share)

    leftover = math.floor(distributed) - sum(math.floor(s) for s in shares.values())
    if leftover > 0:
        _spread_leftover(allotments, children, sorted(shares), leftover)

    logger.debug(f"Negotiated {budget} across {len(children)} children: {allotments}")
    return allotments


def _spread_leftover(
    allotments: list[int],
    children: Sequence[SizingRequest],
    flexible: list[int],
    leftover: int,
) -> None:
    ranked = sorted(flexible, key=lambda i: (-children[i].priority, children[i].order))
    while leftover > 0:
        progressed = False
        for i in ranked:
            if leftover == 0:
                break
            cap = children[i].hard_cap
            if cap is not None and allotments[i] >= cap:
                continue
            allotments[i] += 1
            leftover -= 1
            progressed = True
        if not progressed:
            break
