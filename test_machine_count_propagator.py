"""Tests for machine_count_propagator module"""

from pytest import approx, raises

from machine_count_propagator import propagate_from_handle, propagate_machine_count
from recipes import Edge, Ingredient, ProductionNode, Recipe


def _node(node_id, inputs=(), outputs=(), count=1.0):
    recipe = Recipe(
        f"r_{node_id}",
        "m_assembler",
        inputs=tuple(Ingredient(*item) for item in inputs),
        outputs=tuple(Ingredient(*item) for item in outputs),
    )
    return ProductionNode(node_id, recipe, count)


def _edge(source, target):
    return Edge(f"{source}->{target}", source, "output-0", target, "input-0")


def _chain():
    nodes = [
        _node("miner", outputs=[("p_ore", 10)], count=2),
        _node("smelter", [("p_ore", 20)], [("p_ingot", 10)]),
        _node("constructor", [("p_ingot", 5)], count=2),
    ]
    return nodes, [_edge("miner", "smelter"), _edge("smelter", "constructor")]


def test_ratio_propagates_both_ways():
    """doubling the middle of a chain should double both neighbours"""
    nodes, edges = _chain()
    counts = propagate_machine_count(nodes, edges, "smelter", 2.0)
    assert counts == {"smelter": 2.0, "miner": approx(4.0), "constructor": approx(4.0)}


def test_idle_nodes_are_left_alone():
    """nodes running zero machines should not be resized"""
    nodes, edges = _chain()
    nodes[2] = nodes[2].with_machine_count(0.0)
    counts = propagate_machine_count(nodes, edges, "smelter", 3.0)
    assert "constructor" not in counts
    assert counts["miner"] == approx(6.0)


def test_resizing_idle_node_changes_only_itself():
    nodes, edges = _chain()
    nodes[1] = nodes[1].with_machine_count(0.0)
    assert propagate_machine_count(nodes, edges, "smelter", 1.0) == {"smelter": 1.0}


def test_unconnected_nodes_are_unchanged():
    nodes, edges = _chain()
    nodes.append(_node("elsewhere", outputs=[("p_coal", 1)]))
    assert "elsewhere" not in propagate_machine_count(nodes, edges, "miner", 1.0)


def test_unknown_node():
    nodes, edges = _chain()
    with raises(ValueError, match="Unknown node"):
        propagate_machine_count(nodes, edges, "ghost", 1.0)


def test_propagate_from_handle_skips_nodes_on_that_handle():
    """nodes wired to the dragged handle keep their counts"""
    nodes, edges = _chain()
    counts = propagate_from_handle(nodes, edges, "smelter", "output", 0, 2.0)
    assert "constructor" not in counts
    assert counts["miner"] == approx(4.0)
