"""Render pipeline: materialize, flatten, evict, assemble.

Usage:
    cache = SizeCache(capacity=4096)
    renderer = PromptRenderer(CharRatioMeasurer(), cache)
    result = await renderer.render(tree, budget=8000)
    for message in result.messages:
        ...

Each call builds and discards its own tree; only the SizeCache passed in
is shared between calls.
"""

from __future__ import annotations

import logging
import time

from promptfit.cancellation import CancellationToken
from promptfit.config import RenderConfig
from promptfit.measure.cache import SizeCache
from promptfit.measure.measurer import CachedMeasurer, Measurer, MeasureFn, measurer_namespace
from promptfit.nodes.models import Node
from promptfit.render.evictor import evict
from promptfit.render.flatten import Flattened, MessageUnit, flatten
from promptfit.render.materializer import Materializer
from promptfit.render.result import GLOBAL_SCOPE, CacheStats, RenderResult, assemble_result

logger = logging.getLogger("promptfit.render")


class PromptRenderer:
    """Renders node trees against a budget with a shared measurer and cache."""

    def __init__(
        self,
        measurer: Measurer | MeasureFn,
        cache: SizeCache | None = None,
        config: RenderConfig | None = None,
    ) -> None:
        self.measurer = measurer
        self.cache = cache
        self.config = config or RenderConfig()
        self._namespace = measurer_namespace(measurer)

    async def render(
        self,
        tree: Node,
        budget: int,
        cancellation: CancellationToken | None = None,
    ) -> RenderResult:
        """Render `tree` into messages that fit `budget`.

        Raises:
            InvalidTreeError: If the tree is malformed (before any hook runs).
            RenderCancelledError: If `cancellation` fires; nothing is returned.
            MeasurementError: If measuring fails under the propagate policy.
        """
        start_time = time.time()
        token = cancellation or CancellationToken()
        measurer = CachedMeasurer(self.measurer, self.cache, token, self._namespace)

        # Phase 1: prepare + expand
        materializer = Materializer(measurer, token, self.config)
        tree_m = await materializer.materialize(tree, budget)
        token.raise_if_cancelled()

        # Phase 2: linearize
        flat = flatten(tree_m, self.config.default_priority, self.config.default_role)

        # Phase 3: hard caps, innermost first, then the global budget
        survivors, evicted, cap_overflows = self._enforce_caps(flat)
        outcome = evict(survivors, budget, self.config.eviction_granularity)
        evicted.extend((unit, GLOBAL_SCOPE) for unit in outcome.evicted)

        if outcome.unsatisfiable:
            logger.warning(
                f"Budget unsatisfiable: mandatory content needs {outcome.total} of {budget}"
            )

        elapsed_ms = (time.time() - start_time) * 1000
        result = assemble_result(
            kept=outcome.kept,
            evicted=evicted,
            budget=budget,
            expected_total=outcome.total,
            units_total=len(flat.units),
            cache_stats=CacheStats(hits=measurer.hits, misses=measurer.misses),
            budget_unsatisfiable=outcome.unsatisfiable,
            cap_overflows=cap_overflows,
            degraded=[label for _, label in sorted(materializer.degraded)],
            render_time_ms=elapsed_ms,
        )
        logger.debug(
            f"Rendered {len(result.messages)}/{result.units_total} units, "
            f"{result.total_size}/{budget} in {result.render_time_ms}ms"
        )
        return result

    def _enforce_caps(
        self, flat: Flattened
    ) -> tuple[list[MessageUnit], list[tuple[MessageUnit, str]], list[str]]:
        """Evict inside each hard-capped subtree until it fits its cap."""
        removed: set[int] = set()
        evicted: list[tuple[MessageUnit, str]] = []
        overflows: list[str] = []

        for scope in flat.scopes:
            members = [
                unit for unit in flat.units[scope.start:scope.end]
                if unit.declared_order not in removed
            ]
            outcome = evict(members, scope.cap, self.config.eviction_granularity)
            for unit in outcome.evicted:
                removed.add(unit.declared_order)
                evicted.append((unit, scope.label))
            if outcome.unsatisfiable:
                logger.warning(
                    f"Mandatory content in '{scope.label}' needs {outcome.total}, "
                    f"over its hard cap of {scope.cap}"
                )
                overflows.append(scope.label)

        survivors = [unit for unit in flat.units if unit.declared_order not in removed]
        return survivors, evicted, overflows


async def render(
    tree: Node,
    budget: int,
    cancellation: CancellationToken | None = None,
    *,
    measurer: Measurer | MeasureFn,
    cache: SizeCache | None = None,
    config: RenderConfig | None = None,
) -> RenderResult:
    """One-shot render with an explicit measurer and optional shared cache."""
    renderer = PromptRenderer(measurer, cache=cache, config=config)
    return await renderer.render(tree, budget, cancellation)
