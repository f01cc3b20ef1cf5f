"""Structural validation of declared node trees.

Runs before any hook is invoked. The tree is loaded into a networkx
DiGraph keyed by node identity; a node reached twice is either shared
between parents or part of a cycle, and both are rejected.
"""

from __future__ import annotations

import math

import networkx as nx

from promptfit.nodes.models import Node
from promptfit.exceptions import InvalidTreeError


def validate_tree(
    root: Node,
    budget: int | None = None,
    max_depth: int = 64,
    seen: set[int] | None = None,
    base_depth: int = 0,
) -> nx.DiGraph:
    """Validate a tree and return its structure graph.

    Args:
        root: Root of the (sub)tree to check.
        budget: Budget inherited by ``root``; hard caps may not exceed it.
        max_depth: Maximum nesting depth measured from the request root.
        seen: Node identities already placed in this request. Updated in
            place so that dynamically expanded subtrees can be checked
            against the rest of the tree.
        base_depth: Depth of ``root`` within the request tree.

    Raises:
        InvalidTreeError: On shared nodes, cycles, negative attributes,
            hard caps above the inherited budget or excessive depth.
    """
    if budget is not None and budget < 0:
        raise InvalidTreeError(f"Budget must be non-negative, got {budget}")

    seen = seen if seen is not None else set()
    graph = nx.DiGraph()

    stack: list[tuple[Node, Node | None, int | None, int]] = [(root, None, budget, base_depth)]
    while stack:
        node, parent, inherited, depth = stack.pop()

        if id(node) in seen:
            raise InvalidTreeError(
                f"Node '{node.label}' appears more than once (shared node or cycle)"
            )
        seen.add(id(node))

        if depth > max_depth:
            raise InvalidTreeError(
                f"Tree is deeper than the maximum of {max_depth} at '{node.label}'"
            )

        _check_attributes(node)

        if node.hard_cap is not None and inherited is not None and node.hard_cap > inherited:
            raise InvalidTreeError(
                f"hard_cap {node.hard_cap} of '{node.label}' exceeds "
                f"its inherited budget {inherited}"
            )

        graph.add_node(id(node), node=node)
        if parent is not None:
            graph.add_edge(id(parent), id(node))

        child_budget = inherited
        if node.hard_cap is not None:
            child_budget = node.hard_cap

        for child in reversed(list(node.iter_children())):
            if not isinstance(child, Node):
                raise InvalidTreeError(
                    f"'{node.label}' has a child that is not a node: {child!r}"
                )
            stack.append((child, node, child_budget, depth + 1))

    if not nx.is_arborescence(graph):
        raise InvalidTreeError(f"Tree rooted at '{root.label}' is not a tree")

    return graph


def _check_attributes(node: Node) -> None:
    if node.priority is not None and (not isinstance(node.priority, int) or node.priority < 0):
        raise InvalidTreeError(
            f"priority of '{node.label}' must be a non-negative integer, got {node.priority!r}"
        )
    if not math.isfinite(node.flex_grow) or node.flex_grow < 0:
        raise InvalidTreeError(
            f"flex_grow of '{node.label}' must be a non-negative number, got {node.flex_grow!r}"
        )
    for attr in ("hard_cap", "size_hint"):
        value = getattr(node, attr)
        if value is not None and (not isinstance(value, int) or value < 0):
            raise InvalidTreeError(
                f"{attr} of '{node.label}' must be a non-negative integer, got {value!r}"
            )
