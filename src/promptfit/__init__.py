"""promptfit - budget-constrained prompt assembly and eviction.

Usage:
    from promptfit import Container, Message, PromptRenderer, SizeCache

    tree = Container([
        Message("system", "You are terse.", mandatory=True),
        Message("user", history_text, priority=100),
    ])
    renderer = PromptRenderer(measurer, SizeCache(capacity=4096))
    result = await renderer.render(tree, budget=8000)
"""

__version__ = "0.1.0"

from promptfit.cancellation import CancellationToken
from promptfit.measure import CharRatioMeasurer, SizeCache
from promptfit.nodes import Container, Leaf, Message, PriorityList, PruneDirection
from promptfit.render import PromptRenderer, RenderResult, render

__all__ = [
    "CancellationToken",
    "CharRatioMeasurer",
    "Container",
    "Leaf",
    "Message",
    "PriorityList",
    "PromptRenderer",
    "PruneDirection",
    "RenderResult",
    "SizeCache",
    "render",
]
