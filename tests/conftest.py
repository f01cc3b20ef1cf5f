"""Shared test fixtures for promptfit."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from promptfit.measure.cache import SizeCache
from promptfit.render.engine import PromptRenderer


class LengthMeasurer:
    """Size = number of characters. Records every call."""

    name = "length"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def measure(self, content: str) -> int:
        self.calls.append(content)
        return len(content)


class SlowMeasurer:
    """Async length measurer that yields to the loop before answering."""

    name = "slow-length"

    def __init__(self, delay: float = 0.01, fail_on: str | None = None) -> None:
        self.delay = delay
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def measure(self, content: str) -> int:
        self.calls.append(content)
        await asyncio.sleep(self.delay)
        if self.fail_on is not None and self.fail_on in content:
            raise RuntimeError(f"cannot measure {content!r}")
        return len(content)


@pytest.fixture
def measurer() -> LengthMeasurer:
    return LengthMeasurer()


@pytest.fixture
def slow_measurer() -> SlowMeasurer:
    return SlowMeasurer()


@pytest.fixture
def cache() -> SizeCache:
    return SizeCache(capacity=128)


@pytest.fixture
def renderer(measurer: LengthMeasurer, cache: SizeCache) -> PromptRenderer:
    return PromptRenderer(measurer, cache)


@pytest.fixture
def tree_file(tmp_path: Path) -> Path:
    """A chat prompt declaration: system prompt, history, retrieved docs."""
    tree = {
        "kind": "container",
        "children": [
            {
                "kind": "message",
                "key": "system",
                "role": "system",
                "text": "You are a careful assistant that answers briefly.",
                "mandatory": True,
            },
            {
                "kind": "list",
                "key": "history",
                "priority": 500,
                "prune": "keep-newest",
                "positional": True,
                "children": [
                    {"kind": "message", "key": "turn-1", "role": "user", "text": "What is a token budget?" * 4},
                    {"kind": "message", "key": "turn-2", "role": "assistant", "text": "A ceiling on prompt size." * 4},
                    {"kind": "message", "key": "turn-3", "role": "user", "text": "How is it enforced?"},
                ],
            },
            {
                "kind": "container",
                "key": "docs",
                "priority": 100,
                "hard_cap": 60,
                "children": [
                    {"kind": "leaf", "key": "doc-1", "text": "Eviction removes low priority content first." * 2},
                    {"kind": "leaf", "key": "doc-2", "text": "Ties go to earlier declarations." * 2},
                ],
            },
            {
                "kind": "message",
                "key": "question",
                "role": "user",
                "text": "Summarize the rules.",
                "mandatory": True,
            },
        ],
    }
    path = tmp_path / "prompt.json"
    path.write_text(json.dumps(tree))
    return path
