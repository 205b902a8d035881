"""Machine-count suggestions that would resolve excess and deficiency.

For a deficient input the connection topology is searched for every output
that could supply it. Candidates are ranked with a sort key whose fields are
compared in priority order; the best one becomes the suggestion.
"""

import logging
from collections import deque
from dataclasses import dataclass

from excess_analyzer import is_significant
from flow_calculator import FlowResult
from graph_builder import GraphNode, ProductionGraph
from solver_config import DEFAULT_CONFIG, SolverConfig

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)

INCREASE = "increase"
DECREASE = "decrease"

# reasons
CONNECTED_SHORTAGE = "connected_shortage"
SHORTAGE = "shortage"
EXCESS = "excess"
EXCESS_AVAILABLE = "excess_available"


@dataclass(frozen=True)
class Suggestion:
    """A proposed machine-count change on one node.

    trigger_node_id and trigger_index name the port whose excess or deficiency
    produced the suggestion.
    """

    node_id: str
    handle_type: str
    handle_index: int
    product_id: str
    adjustment: str
    reason: str
    current_flow: float
    target_flow: float
    delta_flow: float
    current_machine_count: float
    suggested_machine_count: float
    machine_delta: float
    trigger_node_id: str
    trigger_index: int
    is_multi_output: bool = False
    has_constrained_outputs: bool = False
    power_increase: float = 0.0


@dataclass(frozen=True, order=True)
class CandidateRank:
    """Sort key of a supplier candidate; smaller is better.

    Fields are compared in declaration order: a directly connected candidate
    beats everything else, the node id and output index only break exact ties.
    """

    not_directly_connected: bool
    has_extractor_alternative: bool
    not_primary_output: bool
    byproduct_score: float
    is_extractor: bool
    machine_delta: float
    power_increase: float
    node_id: str
    output_index: int


@dataclass(frozen=True)
class _Candidate:
    node_id: str
    output_index: int
    direct: bool


def round_machine_count(value: float) -> float:
    """Round to 10 decimals, or 20 when that loses more than 1e-12."""
    at10 = round(value, 10)
    at20 = round(value, 20)
    return at20 if abs(at20 - at10) > 1e-12 else at10


def _find_supplier_outputs(graph: ProductionGraph, node_id: str, input_index: int) -> list[_Candidate]:
    """Collect the outputs that could supply a deficient input.

    Precondition:
        (node_id, input_index) is an input port of graph

    Postcondition:
        returns every output connected to the input, plus the outputs feeding
        sibling consumers of those outputs, recursively
        each output appears once; direct is True for outputs connected to the
        deficient input itself

    Args:
        graph: production graph
        node_id: consumer node
        input_index: deficient input slot

    Returns:
        candidates in discovery order
    """
    candidates: dict[tuple[str, int], _Candidate] = {}
    visited = {(node_id, input_index)}
    queue = deque([(node_id, input_index)])

    while queue:
        consumer = queue.popleft()
        for connection in graph.connections_into(*consumer):
            if connection.source_key not in candidates:
                candidates[connection.source_key] = _Candidate(
                    connection.source_node_id,
                    connection.source_index,
                    consumer == (node_id, input_index),
                )
            for sibling in graph.connections_from(*connection.source_key):
                if sibling.target_key in visited:
                    continue
                visited.add(sibling.target_key)
                queue.append(sibling.target_key)

    return list(candidates.values())


def _byproduct_score(node: GraphNode, output_index: int) -> float:
    """0 for the node's largest output, approaching 1 for minor byproducts"""
    largest = max(port.rate_per_machine for port in node.outputs.values())
    if largest <= 0:
        return 0.0
    return 1.0 - node.outputs[output_index].rate_per_machine / largest


def _has_extractor(graph: ProductionGraph, product_id: str, excluding: str) -> bool:
    product = graph.products.get(product_id)
    if product is None:
        return False
    return any(
        port.node_id != excluding and graph.nodes[port.node_id].is_extractor
        for port in product.producers
    )


def _has_constrained_outputs(graph: ProductionGraph, node: GraphNode, output_index: int) -> bool:
    """True if another output feeds a consumer that has no other supplier."""
    for index in node.outputs:
        if index == output_index:
            continue
        for connection in graph.connections_from(node.node_id, index):
            suppliers = graph.connections_into(*connection.target_key)
            if all(supplier.source_node_id == node.node_id for supplier in suppliers):
                return True
    return False


def _byproduct_only(
    graph: ProductionGraph, node: GraphNode, output_index: int, config: SolverConfig
) -> bool:
    """True if scaling the node for this output would mainly serve a byproduct.

    That is the case when a dedicated extractor could fill the product instead
    and another output of the node has real demand that no extractor covers.
    """
    if len(node.outputs) < 2:
        return False
    product_id = node.outputs[output_index].product_id
    if not _has_extractor(graph, product_id, node.node_id):
        return False
    for index, port in node.outputs.items():
        if index == output_index or port.rate <= 0:
            continue
        demand = sum(c.target_rate for c in graph.connections_from(node.node_id, index))
        if demand >= config.real_demand_ratio * port.rate and not _has_extractor(
            graph, port.product_id, node.node_id
        ):
            return True
    return False


def _rank(
    graph: ProductionGraph, candidate: _Candidate, machine_delta: float, config: SolverConfig
) -> CandidateRank:
    node = graph.nodes[candidate.node_id]
    product_id = node.outputs[candidate.output_index].product_id
    score = _byproduct_score(node, candidate.output_index)
    return CandidateRank(
        not_directly_connected=not candidate.direct,
        has_extractor_alternative=_has_extractor(graph, product_id, node.node_id),
        not_primary_output=score > config.primary_output_tolerance,
        byproduct_score=score,
        is_extractor=node.is_extractor,
        machine_delta=machine_delta,
        power_increase=machine_delta * node.recipe.power_consumption,
        node_id=node.node_id,
        output_index=candidate.output_index,
    )


def _best_supplier_suggestion(
    graph: ProductionGraph,
    flows: FlowResult,
    node_id: str,
    input_index: int,
    shortage: float,
    config: SolverConfig,
) -> Suggestion | None:
    """Pick the best output to scale up for a deficient input, if any."""
    ranked = []
    for candidate in _find_supplier_outputs(graph, node_id, input_index):
        supplier = graph.nodes[candidate.node_id]
        port = supplier.outputs[candidate.output_index]
        if supplier.machine_count <= config.suggestion_epsilon:
            continue
        if port.rate_per_machine <= config.suggestion_epsilon:
            continue
        machine_delta = shortage / port.rate_per_machine
        skip = _byproduct_only(graph, supplier, candidate.output_index, config)
        ranked.append((skip, _rank(graph, candidate, machine_delta, config), candidate))

    if not ranked:
        return None
    survivors = [entry for entry in ranked if not entry[0]] or ranked
    _, rank, candidate = min(survivors, key=lambda entry: entry[1])

    supplier = graph.nodes[candidate.node_id]
    port = supplier.outputs[candidate.output_index]
    produced = flows.by_node[supplier.node_id].output_flows[candidate.output_index].produced
    return Suggestion(
        node_id=supplier.node_id,
        handle_type="output",
        handle_index=candidate.output_index,
        product_id=port.product_id,
        adjustment=INCREASE,
        reason=CONNECTED_SHORTAGE,
        current_flow=produced,
        target_flow=produced + shortage,
        delta_flow=shortage,
        current_machine_count=supplier.machine_count,
        suggested_machine_count=round_machine_count(supplier.machine_count + rank.machine_delta),
        machine_delta=round_machine_count(rank.machine_delta),
        trigger_node_id=node_id,
        trigger_index=input_index,
        is_multi_output=len(supplier.outputs) > 1,
        has_constrained_outputs=_has_constrained_outputs(graph, supplier, candidate.output_index),
        power_increase=rank.power_increase,
    )


def _deficiency_suggestions(
    graph: ProductionGraph, flows: FlowResult, config: SolverConfig
) -> list[Suggestion]:
    suggestions = []
    for node_id, node in graph.nodes.items():
        for index, port in node.inputs.items():
            input_flow = flows.by_node[node_id].input_flows[index]
            shortage = input_flow.needed - input_flow.connected
            if not is_significant(shortage, input_flow.needed, input_flow.connected, config):
                continue

            if suggestion := _best_supplier_suggestion(graph, flows, node_id, index, shortage, config):
                suggestions.append(suggestion)

            if port.rate_per_machine <= config.suggestion_epsilon:
                continue
            reduction = shortage / port.rate_per_machine
            new_count = node.machine_count - reduction
            if new_count > config.suggestion_epsilon:
                suggestions.append(Suggestion(
                    node_id=node_id,
                    handle_type="input",
                    handle_index=index,
                    product_id=port.product_id,
                    adjustment=DECREASE,
                    reason=SHORTAGE,
                    current_flow=input_flow.connected,
                    target_flow=input_flow.connected,
                    delta_flow=-shortage,
                    current_machine_count=node.machine_count,
                    suggested_machine_count=round_machine_count(new_count),
                    machine_delta=round_machine_count(-reduction),
                    trigger_node_id=node_id,
                    trigger_index=index,
                    is_multi_output=len(node.outputs) > 1,
                ))
    return suggestions


def _excess_suggestions(
    graph: ProductionGraph, flows: FlowResult, config: SolverConfig
) -> list[Suggestion]:
    suggestions = []
    for node_id, node in graph.nodes.items():
        if node.machine_count <= config.suggestion_epsilon:
            continue
        for index, port in node.outputs.items():
            output_flow = flows.by_node[node_id].output_flows[index]
            excess = output_flow.produced - output_flow.connected
            if not is_significant(excess, output_flow.produced, output_flow.connected, config):
                continue
            if port.rate_per_machine <= config.suggestion_epsilon:
                continue

            reduction = excess / port.rate_per_machine
            new_count = node.machine_count - reduction
            if new_count > config.suggestion_epsilon:
                suggestions.append(Suggestion(
                    node_id=node_id,
                    handle_type="output",
                    handle_index=index,
                    product_id=port.product_id,
                    adjustment=DECREASE,
                    reason=EXCESS,
                    current_flow=output_flow.produced,
                    target_flow=output_flow.produced - excess,
                    delta_flow=-excess,
                    current_machine_count=node.machine_count,
                    suggested_machine_count=round_machine_count(new_count),
                    machine_delta=round_machine_count(-reduction),
                    trigger_node_id=node_id,
                    trigger_index=index,
                    is_multi_output=len(node.outputs) > 1,
                ))

            for connection in graph.connections_from(node_id, index):
                consumer = graph.nodes[connection.target_node_id]
                consumer_port = consumer.inputs[connection.target_index]
                if consumer.machine_count <= config.suggestion_epsilon:
                    continue
                if consumer_port.rate_per_machine <= config.suggestion_epsilon:
                    continue
                increase = excess / consumer_port.rate_per_machine
                connected = flows.by_node[consumer.node_id].input_flows[connection.target_index].connected
                suggestions.append(Suggestion(
                    node_id=consumer.node_id,
                    handle_type="input",
                    handle_index=connection.target_index,
                    product_id=consumer_port.product_id,
                    adjustment=INCREASE,
                    reason=EXCESS_AVAILABLE,
                    current_flow=connected,
                    target_flow=connected + excess,
                    delta_flow=excess,
                    current_machine_count=consumer.machine_count,
                    suggested_machine_count=round_machine_count(consumer.machine_count + increase),
                    machine_delta=round_machine_count(increase),
                    trigger_node_id=node_id,
                    trigger_index=index,
                    is_multi_output=len(consumer.outputs) > 1,
                    power_increase=increase * consumer.recipe.power_consumption,
                ))
    return suggestions


def calculate_suggestions(
    graph: ProductionGraph, flows: FlowResult, config: SolverConfig = DEFAULT_CONFIG
) -> tuple[Suggestion, ...]:
    """Suggest machine-count changes for every significant excess and deficiency.

    Precondition:
        flows were computed for graph

    Postcondition:
        each deficient input yields at most one supplier increase and at most
        one consumer decrease
        each excess output yields at most one producer decrease and one
        consumer increase per connection
        suggested counts and deltas are rounded with round_machine_count

    Args:
        graph: production graph
        flows: flow result
        config: tolerances and ranking thresholds

    Returns:
        suggestions, deficiency-driven first
    """
    suggestions = _deficiency_suggestions(graph, flows, config) + _excess_suggestions(graph, flows, config)
    _LOGGER.debug("Computed %d suggestions", len(suggestions))
    return tuple(suggestions)


def suggestions_for_node(suggestions, node_id: str) -> list[Suggestion]:
    """All suggestions targeting a node"""
    return [suggestion for suggestion in suggestions if suggestion.node_id == node_id]


def suggestion_for_handle(suggestions, node_id: str, handle_type: str, handle_index: int) -> Suggestion | None:
    """First suggestion targeting a specific handle, or None"""
    for suggestion in suggestions:
        if (suggestion.node_id, suggestion.handle_type, suggestion.handle_index) == (
            node_id, handle_type, handle_index
        ):
            return suggestion
    return None
