"""Budgeted prompt rendering.

Turns a declared node tree into an ordered list of messages that fits a
token budget, evicting the lowest-priority content first.

Usage:
    from promptfit.render import PromptRenderer

    renderer = PromptRenderer(measurer, cache)
    result = await renderer.render(tree, budget=8000)
    print(result.summary())
"""

from promptfit.render.engine import PromptRenderer, render
from promptfit.render.result import CacheStats, EvictedUnit, RenderedMessage, RenderResult

__all__ = [
    "CacheStats",
    "EvictedUnit",
    "PromptRenderer",
    "RenderResult",
    "RenderedMessage",
    "render",
]
