"""Tests for temperature module"""

from frozendict import frozendict
from pytest import approx

from flow_calculator import FlowCalculator
from graph_builder import build_graph
from recipes import Edge, Ingredient, ProductionNode, Recipe
from solver_config import DEFAULT_CONFIG
from temperature import (
    apply_temperatures_to_nodes,
    needs_temperature_pass,
    propagate_temperatures,
    temperatures_changed,
)


def _node(node_id, machine_id, inputs=(), outputs=(), count=1.0, **recipe_args):
    recipe = Recipe(
        f"r_{node_id}",
        machine_id,
        inputs=tuple(Ingredient(*item) for item in inputs),
        outputs=tuple(Ingredient(*item) for item in outputs),
        **recipe_args,
    )
    return ProductionNode(node_id, recipe, count)


def _well(node_id):
    return _node(node_id, "m_geothermal_well", [("p_water", 1)], [("p_water", 1)])


def _edge(source, target, source_index=0, target_index=0):
    return Edge(f"{source}->{target}", source, f"output-{source_index}", target, f"input-{target_index}")


def _propagate(nodes, edges):
    graph = build_graph(nodes, edges)
    flows = FlowCalculator().calculate(graph)
    return graph, propagate_temperatures(graph, flows)


def test_needs_temperature_pass():
    """only graphs with heat sources or steam-timed machines need a pass"""
    plain = build_graph([_node("smelter", "m_smelter", [("p_iron_ore", 1)])], [])
    heated = build_graph([_well("well")], [])
    timed = build_graph([_node("alloyer", "m_alloyer", [("p_steam", 1)])], [])
    assert not needs_temperature_pass(plain)
    assert needs_temperature_pass(heated)
    assert needs_temperature_pass(timed)


def test_geothermal_chain_is_capped():
    """chained wells should add heat up to the cap and stop after the chain limit"""
    nodes = [_well("w1"), _well("w2"), _well("w3"), _well("w4")]
    edges = [_edge("w1", "w2"), _edge("w2", "w3"), _edge("w3", "w4")]
    _, data = _propagate(nodes, edges)

    assert data.input_temperatures[("w1", 0)] == 18.0
    assert data.output_temperatures[("w1", 0)] == 98.0
    assert data.output_temperatures[("w2", 0)] == 178.0
    assert data.output_temperatures[("w3", 0)] == 220.0
    assert data.output_temperatures[("w4", 0)] == 220.0
    assert dict(data.geothermal_chains) == {"w1": 1, "w2": 2, "w3": 3, "w4": 4}
    assert data.cycle_nodes == frozenset()


def test_well_feedback_loop_converges_to_cap():
    """two wells feeding each other should settle at the cap"""
    nodes = [_well("a"), _well("b")]
    edges = [_edge("a", "b"), _edge("b", "a")]
    _, data = _propagate(nodes, edges)

    assert data.cycle_nodes == frozenset({"a", "b"})
    assert data.output_temperatures[("a", 0)] == 220.0
    assert data.output_temperatures[("b", 0)] == 220.0
    assert 1 < data.iterations <= DEFAULT_CONFIG.max_cycle_iterations
    print(f"✓ Feedback loop settled after {data.iterations} rounds")


def test_consumer_of_cycle_sees_settled_temperature():
    """nodes downstream of a cycle should use its converged output"""
    nodes = [
        _node("a", "m_geothermal_well", [("p_water", 1)], [("p_water", 2)]),
        _well("b"),
        _node("tank", "m_tank", [("p_water", 1)], [("p_water", 1)]),
    ]
    edges = [_edge("a", "b"), _edge("b", "a"), Edge("a->tank", "a", "output-0", "tank", "input-0")]
    _, data = _propagate(nodes, edges)
    assert data.input_temperatures[("tank", 0)] == 220.0
    assert data.output_temperatures[("tank", 0)] == 220.0


def test_mixed_inputs_are_flow_weighted():
    """an input fed by two sources should take the flow-weighted average"""
    nodes = [
        _node("firebox", "m_firebox", [("p_coal", 1)], [("p_water", 3)]),
        _node("generator", "m_coal_generator", [("p_coal", 1)], [("p_water", 1)]),
        _node("mixer", "m_tank", [("p_water", 4)], [("p_water", 4)]),
    ]
    edges = [_edge("firebox", "mixer"), _edge("generator", "mixer")]
    _, data = _propagate(nodes, edges)
    assert data.input_temperatures[("mixer", 0)] == approx((240 * 3 + 150 * 1) / 4)
    assert data.output_temperatures[("mixer", 0)] == approx(217.5)


def test_unconnected_input_defaults_to_water_temperature():
    _, data = _propagate([_node("heater", "m_electric_water_heater", [("p_water", 1)], [("p_water", 1)],
                                temperature_settings=frozendict({"temperature": 320}))], [])
    assert data.input_temperatures[("heater", 0)] == 18.0
    assert data.output_temperatures[("heater", 0)] == 320.0


def test_boiler_uses_coolant_temperature():
    """boiler steam should follow the temperature of its second input"""
    nodes = [
        _node("firebox", "m_firebox", [("p_coal", 1)], [("p_water", 2)]),
        _node("boiler", "m_boiler", [("p_coal", 1), ("p_water", 2)], [("p_steam", 2), ("p_water", 1)]),
    ]
    _, data = _propagate(nodes, [_edge("firebox", "boiler", 0, 1)])
    assert data.input_temperatures[("boiler", 1)] == 240.0
    assert data.output_temperatures[("boiler", 0)] == 240.0
    assert data.output_temperatures[("boiler", 1)] == approx(204.0)


def test_apply_suppresses_cold_boiler_steam():
    """steam below the minimum temperature should be produced at quantity zero"""
    nodes = [_node("boiler", "m_boiler", [("p_coal", 1), ("p_water", 2)], [("p_steam", 2)])]
    graph, data = _propagate(nodes, [])
    applied = apply_temperatures_to_nodes(nodes, data, graph)

    steam = applied[0].recipe.outputs[0]
    assert steam.temperature == 18.0
    assert steam.quantity == 0.0
    assert steam.original_quantity == 2
    assert nodes[0].recipe.outputs[0].quantity == 2
    assert temperatures_changed(nodes, applied, 0.1)


def test_boiler_heat_loss_is_floored_at_water_temperature():
    """a large heat loss should leave cold steam at the water default, not below"""
    nodes = [
        _node(
            "boiler", "m_boiler", [("p_coal", 1), ("p_water", 2)], [("p_steam", 2), ("p_water", 1)],
            temperature_settings=frozendict({"heat_loss": 30}),
        ),
    ]
    graph, data = _propagate(nodes, [])
    assert data.output_temperatures[("boiler", 0)] == 18.0
    assert data.output_temperatures[("boiler", 1)] == 18.0

    steam = apply_temperatures_to_nodes(nodes, data, graph)[0].recipe.outputs[0]
    assert steam.temperature == 18.0
    assert steam.quantity == 0.0


def test_apply_records_steam_temperature():
    """steam-timed machines should record the temperature of their steam input"""
    nodes = [
        _node("firebox", "m_firebox", [("p_coal", 1)], [("p_steam", 1)]),
        _node("drill", "m_industrial_drill", [("p_steam", 1)], [("p_iron_ore", 4)]),
    ]
    graph, data = _propagate(nodes, [_edge("firebox", "drill")])
    applied = apply_temperatures_to_nodes(nodes, data, graph)
    assert applied[1].recipe.temp_dependent_input_temp == 240.0
    assert temperatures_changed(nodes, applied, 0.1)


def test_temperatures_changed_ignores_output_temperatures():
    """only rate-relevant values should count as a change"""
    nodes = [_well("w1")]
    graph, data = _propagate(nodes, [])
    applied = apply_temperatures_to_nodes(nodes, data, graph)
    assert applied[0].recipe.outputs[0].temperature == 98.0
    assert not temperatures_changed(nodes, applied, 0.1)
