"""Tree-declaration API."""

from promptfit.nodes.loader import NodeSpec, build_tree, load_tree
from promptfit.nodes.models import (
    Container,
    Leaf,
    Message,
    Node,
    NodeKind,
    PriorityList,
    PruneDirection,
)
from promptfit.nodes.validate import validate_tree

__all__ = [
    "Container",
    "Leaf",
    "Message",
    "Node",
    "NodeKind",
    "NodeSpec",
    "PriorityList",
    "PruneDirection",
    "build_tree",
    "load_tree",
    "validate_tree",
]
