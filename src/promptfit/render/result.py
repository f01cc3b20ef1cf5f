"""Data models for render results and the assembler that builds them."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from promptfit.exceptions import RenderError
from promptfit.render.flatten import MessageUnit

GLOBAL_SCOPE = "budget"


class RenderedMessage(BaseModel):
    """One (role, content) pair of the final prompt."""

    role: str
    content: str


class EvictedUnit(BaseModel):
    """A unit removed to fit a budget, kept for diagnostics."""

    content_id: str
    role: str
    priority: int
    declared_order: int
    size: int
    scope: str = GLOBAL_SCOPE  # "budget" or the label of a hard-capped subtree


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0


class RenderResult(BaseModel):
    """The surviving prompt plus what was removed and why."""

    messages: list[RenderedMessage] = Field(default_factory=list)
    total_size: int = 0
    budget: int = 0
    evicted: list[EvictedUnit] = Field(default_factory=list)
    cache_stats: CacheStats = Field(default_factory=CacheStats)
    budget_unsatisfiable: bool = False
    cap_overflows: list[str] = Field(default_factory=list)  # Capped subtrees still over their cap
    degraded: list[str] = Field(default_factory=list)  # Subtrees dropped after a hook failure
    units_total: int = 0  # Units before eviction
    render_time_ms: float = 0.0

    @property
    def budget_used_pct(self) -> float:
        return round(self.total_size / max(self.budget, 1) * 100, 1)

    def to_chat(self) -> list[dict[str, str]]:
        """Messages in the common chat-completions shape."""
        return [{"role": m.role, "content": m.content} for m in self.messages]

    def summary(self) -> str:
        """Human-readable summary of the render."""
        lines = [
            f"Size: {self.total_size:,} / {self.budget:,} ({self.budget_used_pct:.0f}%)",
            f"Messages: {len(self.messages)} kept, {len(self.evicted)} evicted "
            f"of {self.units_total} units",
            f"Cache: {self.cache_stats.hits} hits, {self.cache_stats.misses} misses",
            f"Render time: {self.render_time_ms:.1f}ms",
        ]
        if self.budget_unsatisfiable:
            lines.append("Budget unsatisfiable: mandatory content exceeds the budget")
        for label in self.cap_overflows:
            lines.append(f"Hard cap exceeded by mandatory content in '{label}'")
        for label in self.degraded:
            lines.append(f"Degraded: '{label}' dropped after a failure")

        if self.evicted:
            lines.append("")
            lines.append("Evicted:")
            for unit in self.evicted:
                lines.append(
                    f"  #{unit.declared_order} {unit.content_id} ({unit.role}) "
                    f"priority={unit.priority} ~{unit.size} [{unit.scope}]"
                )
        return "\n".join(lines)


def assemble_result(
    kept: Sequence[MessageUnit],
    evicted: Sequence[tuple[MessageUnit, str]],
    budget: int,
    expected_total: int,
    units_total: int,
    cache_stats: CacheStats,
    budget_unsatisfiable: bool = False,
    cap_overflows: Sequence[str] = (),
    degraded: Sequence[str] = (),
    render_time_ms: float = 0.0,
) -> RenderResult:
    """Package surviving units into the final ordered result.

    Raises:
        RenderError: If the survivors do not add up to the evictor's total
            or are out of declaration order.
    """
    total = sum(unit.size for unit in kept)
    if total != expected_total:
        raise RenderError(f"Survivors total {total}, evictor reported {expected_total}")

    orders = [unit.declared_order for unit in kept]
    if any(a >= b for a, b in zip(orders, orders[1:])):
        raise RenderError("Surviving units are out of declaration order")

    return RenderResult(
        messages=[RenderedMessage(role=unit.role, content=unit.content) for unit in kept],
        total_size=total,
        budget=budget,
        evicted=[
            EvictedUnit(
                content_id=unit.content_id,
                role=unit.role,
                priority=unit.priority,
                declared_order=unit.declared_order,
                size=unit.size,
                scope=scope,
            )
            for unit, scope in evicted
        ],
        cache_stats=cache_stats,
        budget_unsatisfiable=budget_unsatisfiable,
        cap_overflows=list(cap_overflows),
        degraded=list(degraded),
        units_total=units_total,
        render_time_ms=round(render_time_ms, 1),
    )
