"""Temperature propagation through the production graph.

Temperatures flow along connections of water and steam products. Heat sources
set their output temperatures, everything else passes its input temperature on.
Nodes are processed in material dependency order; nodes that depend on each
other through a cycle are iterated until their temperatures settle.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from frozendict import frozendict
from tarjan import tarjan

from flow_calculator import FlowResult
from graph_builder import GraphNode, ProductionGraph
from heat_sources import (
    DEFAULT_STEAM_TEMPERATURE,
    DEFAULT_WATER_TEMPERATURE,
    WATER_PRODUCTS,
    Additive,
    Boiler,
    Passthrough,
    get_heat_source,
    has_temp_dependent_cycle,
    is_temperature_product,
    output_temperature,
)
from recipes import ProductionNode, steam_input_index
from solver_config import DEFAULT_CONFIG, SolverConfig

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)


@dataclass(frozen=True)
class TemperatureData:
    """Result of one propagation pass.

    Temperatures are keyed by (node id, recipe slot index).
    """

    input_temperatures: frozendict
    output_temperatures: frozendict
    cycle_nodes: frozenset
    geothermal_chains: frozendict
    iterations: int = 0


def needs_temperature_pass(graph: ProductionGraph) -> bool:
    """True if any node is a heat source or has a temperature-dependent cycle"""
    return any(
        get_heat_source(node.machine_id) is not None or has_temp_dependent_cycle(node.machine_id)
        for node in graph.nodes.values()
    )


def _dependency_components(graph: ProductionGraph) -> tuple[list[list[str]], frozenset]:
    """Order nodes by material dependency and find the cyclic ones.

    Precondition:
        graph was produced by build_graph

    Postcondition:
        returns strongly connected components such that every producer's
        component precedes its consumers' components
        node order inside a component follows graph insertion order
        cycle nodes are members of components with more than one node or a self loop

    Args:
        graph: production graph

    Returns:
        (ordered components, cycle node ids)
    """
    upstream: dict[str, list[str]] = {node_id: [] for node_id in graph.nodes}
    for connection in graph.all_connections():
        upstream[connection.target_node_id].append(connection.source_node_id)

    position = {node_id: index for index, node_id in enumerate(graph.nodes)}
    components = [sorted(component, key=position.__getitem__) for component in tarjan(upstream)]

    cycle_nodes = set()
    for component in components:
        if len(component) > 1 or component[0] in upstream[component[0]]:
            cycle_nodes.update(component)
    return components, frozenset(cycle_nodes)


class _Propagation:
    """mutable state of one propagation pass"""

    def __init__(self, graph: ProductionGraph, flows: FlowResult) -> None:
        self.graph = graph
        self.flows = flows
        self.inputs: dict[tuple[str, int], float] = {}
        self.outputs: dict[tuple[str, int], float] = {}
        self.chains: dict[str, int] = {}

    def input_temperature(self, node_id: str, index: int) -> float:
        """Flow-weighted average of the temperatures feeding an input.

        Sources without a temperature yet are ignored. Falls back to a simple
        average when no flow reaches the input, and to the default water
        temperature when no source has a temperature.
        """
        pairs = []
        for connection in self.graph.connections_into(node_id, index):
            temp = self.outputs.get(connection.source_key)
            if temp is None:
                continue
            flow = self.flows.by_connection[connection.connection_id].flow_rate
            pairs.append((temp, flow))

        if not pairs:
            return DEFAULT_WATER_TEMPERATURE
        total_flow = sum(flow for _, flow in pairs)
        if total_flow > 0:
            return round(sum(temp * flow for temp, flow in pairs) / total_flow, 10)
        return round(sum(temp for temp, _ in pairs) / len(pairs), 10)

    def chain_depth(self, node: GraphNode, visited: frozenset = frozenset()) -> int:
        """Count consecutive additive heat sources ending at node, itself included."""
        visited = visited | {node.node_id}
        deepest = 0
        for index in node.inputs:
            for connection in self.graph.connections_into(node.node_id, index):
                source = self.graph.nodes[connection.source_node_id]
                if source.node_id in visited:
                    continue
                if isinstance(get_heat_source(source.machine_id), Additive):
                    deepest = max(deepest, self.chain_depth(source, visited))
        return deepest + 1

    def _heated_input(self, node: GraphNode, source) -> int | None:
        """Pick the input whose temperature the heat source works from."""
        if isinstance(source, Passthrough):
            for index, port in node.inputs.items():
                if port.product_id == source.input_product:
                    return index
        for index, port in node.inputs.items():
            if port.product_id in WATER_PRODUCTS:
                return index
        for index, port in node.inputs.items():
            if is_temperature_product(port.product_id):
                return index
        return None

    def _heat_source_outputs(self, node: GraphNode, source) -> dict[int, float]:
        heated = self._heated_input(node, source)
        input_temp = self.inputs.get((node.node_id, heated), DEFAULT_WATER_TEMPERATURE)
        input_product = node.inputs[heated].product_id if heated is not None else None
        settings = node.recipe.temperature_settings

        if isinstance(source, Boiler):
            coolant = self.inputs.get((node.node_id, 1))
            steam_temp = output_temperature(source, settings, input_temp, input_product, coolant)
            return {
                index: steam_temp if port.product_id == source.steam_output_product
                else max(round(steam_temp * source.coolant_factor, 10), DEFAULT_WATER_TEMPERATURE)
                for index, port in node.outputs.items()
                if is_temperature_product(port.product_id)
            }

        if isinstance(source, Additive):
            depth = self.chain_depth(node)
            self.chains[node.node_id] = depth
            if depth > source.max_chains:
                temp = input_temp
            else:
                temp = output_temperature(source, settings, input_temp, input_product)
        else:
            temp = output_temperature(source, settings, input_temp, input_product)
        return {
            index: temp
            for index, port in node.outputs.items()
            if is_temperature_product(port.product_id)
        }

    def _plain_outputs(self, node: GraphNode) -> dict[int, float]:
        """Outputs of non-heat-source nodes keep the temperature of a matching input."""
        result = {}
        for index, port in node.outputs.items():
            if not is_temperature_product(port.product_id):
                continue
            matching = [
                self.inputs[(node.node_id, input_index)]
                for input_index, input_port in node.inputs.items()
                if input_port.product_id == port.product_id
            ]
            if matching:
                result[index] = matching[0]
            elif port.temperature is not None:
                result[index] = port.temperature
            else:
                result[index] = DEFAULT_WATER_TEMPERATURE
        return result

    def compute_node(self, node: GraphNode) -> float:
        """Recompute one node's temperatures; return the largest change."""
        change = 0.0
        for index, port in node.inputs.items():
            if not is_temperature_product(port.product_id):
                continue
            key = (node.node_id, index)
            temp = self.input_temperature(node.node_id, index)
            change = max(change, abs(temp - self.inputs.get(key, temp)))
            self.inputs[key] = temp

        source = get_heat_source(node.machine_id)
        outputs = self._heat_source_outputs(node, source) if source else self._plain_outputs(node)
        for index, temp in outputs.items():
            key = (node.node_id, index)
            previous = self.outputs.get(key)
            change = max(change, abs(temp - previous) if previous is not None else 0.0)
            self.outputs[key] = temp
        return change


def propagate_temperatures(
    graph: ProductionGraph,
    flows: FlowResult,
    config: SolverConfig = DEFAULT_CONFIG,
) -> TemperatureData:
    """Compute input and output temperatures for every node.

    Precondition:
        flows were computed for graph

    Postcondition:
        every temperature-product port of every node has a temperature
        acyclic nodes are computed once, after all of their producers
        cycle members are iterated at most max_cycle_iterations times
        consumers of a cycle see the cycle's settled temperatures

    Args:
        graph: production graph
        flows: flow result used to weight mixed inputs
        config: solver settings

    Returns:
        TemperatureData
    """
    state = _Propagation(graph, flows)
    components, cycle_nodes = _dependency_components(graph)
    iterations = 0

    for component in components:
        members = [graph.nodes[node_id] for node_id in component]
        if not cycle_nodes.intersection(component):
            state.compute_node(members[0])
            continue

        for round_index in range(1, config.max_cycle_iterations + 1):
            change = max(state.compute_node(node) for node in members)
            iterations = max(iterations, round_index)
            if round_index > 1 and change <= config.temperature_threshold:
                break
        else:
            _LOGGER.warning(
                "Temperatures in cycle %s did not settle after %d rounds",
                component, config.max_cycle_iterations,
            )

    _LOGGER.debug(
        "Propagated temperatures for %d nodes (%d in cycles, %d rounds)",
        len(graph.nodes), len(cycle_nodes), iterations,
    )
    return TemperatureData(
        input_temperatures=frozendict(state.inputs),
        output_temperatures=frozendict(state.outputs),
        cycle_nodes=cycle_nodes,
        geothermal_chains=frozendict(state.chains),
        iterations=iterations,
    )


def _apply_to_node(node: ProductionNode, data: TemperatureData) -> ProductionNode:
    recipe = node.recipe
    source = get_heat_source(recipe.machine_id)

    outputs = []
    for index, output in enumerate(recipe.outputs):
        temp = data.output_temperatures.get((node.node_id, index))
        if temp is None:
            outputs.append(output)
            continue
        if isinstance(source, Boiler) and output.product_id == source.steam_output_product:
            nominal = output.original_quantity if output.original_quantity is not None else output.quantity
            quantity = 0.0 if temp < source.min_steam_temp else nominal
            outputs.append(replace(output, temperature=temp, quantity=quantity, original_quantity=nominal))
        else:
            outputs.append(replace(output, temperature=temp))
    recipe = replace(recipe, outputs=tuple(outputs))

    if has_temp_dependent_cycle(recipe.machine_id):
        steam_index = steam_input_index(recipe)
        steam_temp = data.input_temperatures.get((node.node_id, steam_index))
        if steam_index >= 0 and steam_temp is not None:
            recipe = replace(recipe, temp_dependent_input_temp=steam_temp)

    return replace(node, recipe=recipe)


def apply_temperatures_to_nodes(
    nodes: Iterable[ProductionNode],
    data: TemperatureData,
    graph: ProductionGraph,
) -> list[ProductionNode]:
    """Return copies of nodes carrying the propagated temperatures.

    Boiler steam below the minimum steam temperature is produced at quantity 0;
    the nominal quantity is kept in original_quantity. Temperature-dependent
    machines record their steam input temperature. Nodes absent from the graph
    are returned unchanged.
    """
    return [
        _apply_to_node(node, data) if node.node_id in graph.nodes else node
        for node in nodes
    ]


def _temperature_signature(node: ProductionNode) -> list[float | None]:
    """Values that feed rate computation and are driven by temperature."""
    steam_temp = node.recipe.temp_dependent_input_temp
    if steam_temp is None and has_temp_dependent_cycle(node.recipe.machine_id):
        steam_temp = DEFAULT_STEAM_TEMPERATURE
    signature = [steam_temp]
    for output in node.recipe.outputs:
        signature.append(output.quantity if not isinstance(output.quantity, str) else None)
    return signature


def temperatures_changed(
    before: Iterable[ProductionNode],
    after: Iterable[ProductionNode],
    threshold: float,
) -> bool:
    """True if a steam temperature or temperature-driven quantity moved by more than threshold.

    Only values that change port rates are compared, so a change here means
    the graph must be rebuilt and the flows recomputed.
    """
    previous = {node.node_id: _temperature_signature(node) for node in before}
    for node in after:
        old = previous.get(node.node_id)
        new = _temperature_signature(node)
        if old is None or len(old) != len(new):
            return True
        for old_value, new_value in zip(old, new):
            if (old_value is None) != (new_value is None):
                return True
            if old_value is not None and abs(new_value - old_value) > threshold:
                return True
    return False
