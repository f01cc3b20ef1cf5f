"""Build node trees from JSON-compatible declarations.

Example document::

    {
      "kind": "container",
      "children": [
        {"kind": "message", "role": "system", "text": "You are terse.", "mandatory": true},
        {"kind": "list", "priority": 500, "prune": "keep-newest", "positional": true,
         "children": [{"kind": "message", "role": "user", "text": "hi"}]}
      ]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from promptfit.exceptions import InvalidTreeError
from promptfit.nodes.models import (
    Container,
    Leaf,
    Message,
    Node,
    NodeKind,
    PriorityList,
    PruneDirection,
)


class NodeSpec(BaseModel):
    """Declarative form of a node."""

    kind: NodeKind
    key: str | None = None
    priority: int | None = Field(default=None, ge=0)
    flex_grow: float = Field(default=0, ge=0)
    hard_cap: int | None = Field(default=None, ge=0)
    size_hint: int | None = Field(default=None, ge=0)
    mandatory: bool | None = None
    role: str | None = None
    text: str = ""
    prune: PruneDirection = PruneDirection.KEEP_OLDEST
    positional: bool = False
    children: list[NodeSpec] = Field(default_factory=list)


def build_tree(spec: NodeSpec | dict[str, Any]) -> Node:
    """Turn a NodeSpec (or its dict form) into a fresh node tree."""
    if not isinstance(spec, NodeSpec):
        try:
            spec = NodeSpec.model_validate(spec)
        except ValidationError as e:
            raise InvalidTreeError(f"Invalid tree declaration: {e}") from e

    common = dict(
        key=spec.key,
        priority=spec.priority,
        flex_grow=spec.flex_grow,
        hard_cap=spec.hard_cap,
        size_hint=spec.size_hint,
        mandatory=spec.mandatory,
    )

    if spec.kind in (NodeKind.LEAF, NodeKind.MESSAGE) and spec.children:
        raise InvalidTreeError(f"A {spec.kind.value} node cannot have children")

    if spec.kind == NodeKind.LEAF:
        return Leaf(spec.text, role=spec.role, **common)
    if spec.kind == NodeKind.MESSAGE:
        return Message(spec.role or "user", spec.text, **common)

    children = [build_tree(child) for child in spec.children]
    if spec.kind == NodeKind.CONTAINER:
        return Container(children, role=spec.role, **common)
    return PriorityList(
        children,
        prune=spec.prune,
        positional=spec.positional,
        role=spec.role,
        **common,
    )


def load_tree(path: Path) -> Node:
    """Load a tree declaration from a JSON file."""
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise InvalidTreeError(f"{path} is not valid JSON: {e}") from e
    return build_tree(data)
