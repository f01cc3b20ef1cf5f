"""Tests for flattening materialized trees into message units."""

from __future__ import annotations

from promptfit.nodes.models import (
    Container,
    Leaf,
    Message,
    Node,
    PriorityList,
    PruneDirection,
)
from promptfit.render.flatten import flatten
from promptfit.render.materializer import MaterializedNode


def _mat(node: Node) -> MaterializedNode:
    """Materialize statically: text as declared, size = length."""
    if node.is_terminal:
        return MaterializedNode(node=node, budget=0, text=node.text, size=len(node.text))
    return MaterializedNode(
        node=node, budget=0, children=[_mat(child) for child in node.iter_children()]
    )


class TestFlattenOrder:
    def test_preorder_declaration_order(self):
        tree = Container([
            Message("system", "s"),
            Container([Leaf("a"), Leaf("b")]),
            Message("user", "u"),
        ])
        units = flatten(_mat(tree)).units
        assert [u.content for u in units] == ["s", "a", "b", "u"]
        assert [u.declared_order for u in units] == [0, 1, 2, 3]

    def test_sizes_carried(self):
        units = flatten(_mat(Container([Leaf("abc"), Leaf("de")]))).units
        assert [u.size for u in units] == [3, 2]

    def test_degraded_subtree_emits_nothing(self):
        tree = Container([Leaf("a"), Container([Leaf("b")])])
        mat = _mat(tree)
        mat.children[1] = MaterializedNode(node=tree.children[1], budget=0, degraded=True)
        assert [u.content for u in flatten(mat).units] == ["a"]


class TestPriorityInheritance:
    def test_inherits_nearest_declared(self):
        tree = Container(
            [Leaf("a"), Container([Leaf("b"), Leaf("c", priority=900)], priority=300)],
            priority=700,
        )
        units = flatten(_mat(tree)).units
        assert [u.priority for u in units] == [700, 300, 900]

    def test_root_default(self):
        units = flatten(_mat(Container([Leaf("a")])), default_priority=42).units
        assert units[0].priority == 42

    def test_mandatory_inherited(self):
        tree = Container([Container([Leaf("a"), Leaf("b", mandatory=False)], mandatory=True)])
        units = flatten(_mat(tree)).units
        assert [u.mandatory for u in units] == [True, False]


class TestRoles:
    def test_message_role(self):
        units = flatten(_mat(Container([Message("assistant", "x")]))).units
        assert units[0].role == "assistant"

    def test_leaf_inherits_container_role(self):
        tree = Container([Container([Leaf("a")], role="system"), Leaf("b")])
        units = flatten(_mat(tree), default_role="user").units
        assert [u.role for u in units] == ["system", "user"]


class TestPriorityLists:
    def test_shared_base_priority(self):
        tree = PriorityList([Leaf("a"), Leaf("b"), Leaf("c")], priority=500)
        units = flatten(_mat(tree)).units
        assert [u.priority for u in units] == [500, 500, 500]

    def test_positional_keep_oldest(self):
        tree = PriorityList(
            [Leaf("a"), Leaf("b"), Leaf("c")],
            priority=500,
            positional=True,
            prune=PruneDirection.KEEP_OLDEST,
        )
        units = flatten(_mat(tree)).units
        assert [u.priority for u in units] == [500, 499, 498]

    def test_positional_keep_newest(self):
        tree = PriorityList(
            [Leaf("a"), Leaf("b"), Leaf("c")],
            priority=500,
            positional=True,
            prune=PruneDirection.KEEP_NEWEST,
        )
        units = flatten(_mat(tree)).units
        assert [u.priority for u in units] == [498, 499, 500]

    def test_item_override_wins(self):
        tree = PriorityList([Leaf("a"), Leaf("b", priority=10)], priority=500, positional=True)
        units = flatten(_mat(tree)).units
        assert [u.priority for u in units] == [500, 10]


class TestGroupsAndScopes:
    def test_uniform_container_is_one_group(self):
        inner = Container([Leaf("a"), Leaf("b")], priority=5)
        tree = Container([Leaf("x", priority=9), inner])
        units = flatten(_mat(tree)).units
        assert units[1].owner_id == inner.declared_order
        assert units[2].owner_id == inner.declared_order
        assert units[0].owner_id != inner.declared_order

    def test_outermost_uniform_container_wins(self):
        inner = Container([Leaf("a")])
        outer = Container([inner, Leaf("b")], priority=5)
        tree = Container([outer, Leaf("x", priority=1)])
        units = flatten(_mat(tree)).units
        assert units[0].owner_id == outer.declared_order
        assert units[1].owner_id == outer.declared_order

    def test_mixed_priorities_are_not_grouped(self):
        leaf_a = Leaf("a", priority=1)
        leaf_b = Leaf("b", priority=2)
        mixed = Container([leaf_a, leaf_b])
        units = flatten(_mat(Container([mixed]))).units
        assert units[0].owner_id == leaf_a.declared_order
        assert units[1].owner_id == leaf_b.declared_order

    def test_lists_do_not_group(self):
        first = Leaf("a")
        items = PriorityList([first, Leaf("b")], priority=5)
        units = flatten(_mat(Container([items]))).units
        assert units[0].owner_id == first.declared_order

    def test_container_of_list_items_is_not_a_group(self):
        first, second = Leaf("a"), Leaf("b")
        wrapper = Container([PriorityList([first, second])], priority=5)
        units = flatten(_mat(Container([wrapper, Leaf("x", priority=1)]))).units
        assert units[0].owner_id == first.declared_order
        assert units[1].owner_id == second.declared_order

    def test_capped_subtrees_recorded_innermost_first(self):
        inner = Container([Leaf("b")], hard_cap=5, key="inner")
        outer = Container([Leaf("a"), inner], hard_cap=10, key="outer")
        flat = flatten(_mat(Container([outer, Leaf("z")])))
        assert [(s.label, s.cap, s.start, s.end) for s in flat.scopes] == [
            ("inner", 5, 1, 2),
            ("outer", 10, 0, 2),
        ]
