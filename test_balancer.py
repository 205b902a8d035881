"""Tests for balancer module"""

from pytest import approx

from balancer import (
    CANCELLED,
    CONVERGED,
    MAX_ITERATIONS,
    NO_CHANGES,
    NO_TARGETS,
    compute_machines,
    upstream_distances,
)
from production_solver import ProductionSolver
from recipes import Edge, Ingredient, ProductionNode, Recipe
from solver_config import DEFAULT_CONFIG


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


def _ore_line(miner_count=1.0):
    nodes = [
        _node("miner", outputs=[("p_iron_ore", 10)], count=miner_count),
        _node("smelter", [("p_iron_ore", 15)], [("p_iron_ingot", 15)]),
    ]
    return nodes, [_edge("miner", "smelter")]


def test_balances_supplier_of_target():
    """the miner feeding a 15/s smelter should be scaled to 1.5"""
    nodes, edges = _ore_line()
    result = compute_machines(nodes, edges, ["smelter"])

    assert result.success
    assert result.converged
    assert result.stopped_reason == CONVERGED
    assert dict(result.updates) == {"miner": approx(1.5)}
    assert not result.has_deficiency
    assert nodes[0].machine_count == 1.0
    print(f"✓ Balanced in {result.iterations} iterations")


def test_overproducing_target_is_scaled_down():
    """a target wasting more than 10% of its connected output should shrink first"""
    nodes, edges = _ore_line(miner_count=2.0)
    result = compute_machines(nodes, edges, ["miner"], debug=True)

    assert result.success
    assert result.converged
    assert dict(result.updates) == {"miner": approx(1.5)}
    assert result.debug_info.log[0].phase == "target_excess"


def test_debug_info_records_iterations():
    """debug mode should keep snapshots and an update log"""
    nodes, edges = _ore_line()
    result = compute_machines(nodes, edges, ["smelter"], debug=True)

    info = result.debug_info
    assert info.method == "heuristic"
    assert [item.product_id for item in info.deficiency_before] == ["p_iron_ore"]
    assert info.deficiency_after == ()
    assert info.log[0].phase == "bottleneck"
    assert dict(info.log[0].updates) == {"miner": approx(1.5)}

    plain = compute_machines(nodes, edges, ["smelter"])
    assert plain.debug_info is None
    assert plain.updates == result.updates


def test_no_targets():
    """unknown or empty targets should stop immediately"""
    nodes, edges = _ore_line()
    for targets in ([], ["ghost"]):
        result = compute_machines(nodes, edges, targets)
        assert not result.success
        assert result.stopped_reason == NO_TARGETS
        assert result.iterations == 0


def test_cancel():
    """a cancelled run should report no updates"""
    nodes, edges = _ore_line()
    result = compute_machines(nodes, edges, ["smelter"], should_cancel=lambda: True)
    assert not result.success
    assert result.stopped_reason == CANCELLED
    assert result.updates == {}


def test_unfixable_deficiency_fails_without_permission():
    """an idle supplier cannot be scaled, so the shortage remains"""
    nodes, edges = _ore_line(miner_count=0.0)
    result = compute_machines(nodes, edges, ["smelter"])
    assert not result.success
    assert result.has_deficiency
    assert result.deficient_nodes == ("smelter",)
    assert result.updates == {}

    allowed = compute_machines(nodes, edges, ["smelter"], allow_deficiency=True)
    assert allowed.success
    assert allowed.has_deficiency


def _unrelated_shortage():
    nodes, edges = _ore_line()
    nodes += [
        _node("well", outputs=[("p_water", 5)]),
        _node("pump", [("p_water", 5)]),
    ]
    return nodes, edges + [_edge("well", "pump")]


def test_stops_after_iterations_without_change():
    """a target with nothing to fix should stop on the no-change streak"""
    nodes, edges = _unrelated_shortage()
    result = compute_machines(nodes, edges, ["pump"])
    assert result.stopped_reason == NO_CHANGES
    assert result.iterations == DEFAULT_CONFIG.no_change_limit
    assert not result.converged
    assert result.success
    assert result.updates == {}


def test_iteration_cap():
    """the run should always end at max_iterations"""
    nodes, edges = _unrelated_shortage()
    config = DEFAULT_CONFIG.with_overrides(max_iterations=2, no_change_limit=5)
    result = compute_machines(nodes, edges, ["pump"], config=config)
    assert result.stopped_reason == MAX_ITERATIONS
    assert result.iterations == 2


def test_upstream_distances():
    nodes, edges = _ore_line()
    nodes.append(_node("constructor", [("p_iron_ingot", 15)]))
    edges.append(_edge("smelter", "constructor"))
    solution = ProductionSolver().solve(nodes, edges)
    assert upstream_distances(solution, ["constructor"]) == {"constructor": 0, "smelter": 1, "miner": 2}
    assert upstream_distances(solution, ["smelter", "ghost"]) == {"smelter": 0, "miner": 1}


def test_cleanup_trims_overproducing_extractor():
    """a surplus supplier should be trimmed once the target needs nothing more"""
    nodes, edges = _ore_line(miner_count=2.0)
    result = compute_machines(nodes, edges, ["smelter"], debug=True)

    assert result.success
    assert result.converged
    assert result.iterations == DEFAULT_CONFIG.no_change_limit
    assert dict(result.updates) == {"miner": approx(1.5)}
    phases = [item.phase for item in result.debug_info.log]
    assert phases == ["bottleneck"] * DEFAULT_CONFIG.no_change_limit + ["cleanup"]


def test_only_lowest_supply_ratio_is_bottleneck():
    """with two short inputs only the scarcer one is fixed first"""
    nodes = [
        _node("plates", outputs=[("p_plate", 8)]),
        _node("screws", outputs=[("p_screw", 4)]),
        _node("assembler", [("p_plate", 10), ("p_screw", 10)]),
    ]
    edges = [
        _edge("plates", "assembler"),
        Edge("screws->assembler", "screws", "output-0", "assembler", "input-1"),
    ]
    result = compute_machines(nodes, edges, ["assembler"], debug=True)

    assert result.converged
    assert dict(result.debug_info.log[0].updates) == {"screws": approx(2.5)}
    assert dict(result.updates) == {"plates": approx(1.25), "screws": approx(2.5)}


def test_self_fed_shortage_is_skipped():
    """an input supplied only by its own node never drives an update"""
    nodes = [
        _node("miner", outputs=[("p_ore", 10)]),
        _node("reactor", [("p_seed", 10), ("p_ore", 20)], [("p_seed", 5)]),
    ]
    edges = [
        Edge("reactor->reactor", "reactor", "output-0", "reactor", "input-0"),
        Edge("miner->reactor", "miner", "output-0", "reactor", "input-1"),
    ]
    result = compute_machines(nodes, edges, ["reactor"], allow_deficiency=True)

    assert result.success
    assert result.has_deficiency
    assert dict(result.updates) == {"miner": approx(2.0)}


def test_chain_converges_closest_first():
    """the supplier nearest the target is resized before the one behind it"""
    nodes, edges = _ore_line()
    nodes.append(_node("constructor", [("p_iron_ingot", 30)]))
    edges.append(_edge("smelter", "constructor"))
    result = compute_machines(nodes, edges, ["constructor"], debug=True)

    assert result.converged
    assert dict(result.updates) == {"smelter": approx(2.0), "miner": approx(3.0)}
    assert [dict(item.updates) for item in result.debug_info.log[:2]] == [
        {"smelter": approx(2.0)},
        {"miner": approx(3.0)},
    ]


class _CountingSolver(ProductionSolver):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def solve(self, *args, **kwargs):
        self.calls += 1
        return super().solve(*args, **kwargs)


def test_no_change_stop_reuses_last_solve():
    """stopping on the no-change streak should not solve the same counts again"""
    nodes, edges = _unrelated_shortage()
    solver = _CountingSolver()
    result = compute_machines(nodes, edges, ["pump"], solver=solver)
    assert result.stopped_reason == NO_CHANGES
    assert solver.calls == result.iterations
