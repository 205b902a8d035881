"""Balance machine counts with a mixed integer program.

Alternative to the iterative balancer: every machine count, connection flow,
excess and deficit is a variable, and a tiered objective ranks deficiency far
above machine count, which ranks far above excess and power.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from frozendict import frozendict
from mip import BINARY, CONTINUOUS, INTEGER, Model, OptimizationStatus, xsum

from balancer import ComputeResult, DebugInfo, upstream_distances
from graph_builder import Port, ProductionGraph
from production_solver import ProductionSolver
from recipes import Edge, ProductionNode
from solver_config import DEFAULT_CONFIG, SolverConfig

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)

# Objective tiers; each dominates everything below it
DEFICIENCY_COUNT_WEIGHT = 1e15
DEFICIENCY_AMOUNT_WEIGHT = 1e12
MODEL_COUNT_WEIGHT = 1e9
CONNECTED_EXCESS_COUNT_WEIGHT = 1e6
CONNECTED_EXCESS_AMOUNT_WEIGHT = 1e3
UNCONNECTED_EXCESS_COUNT_WEIGHT = 1e5
UNCONNECTED_EXCESS_AMOUNT_WEIGHT = 1e2
POWER_WEIGHT = 1e-5

BIG_M_FACTOR = 10000


@dataclass
class _Variables:
    """MIP variables of one balancing model"""

    machines: dict
    ceilings: dict
    flows: dict
    excess: list[tuple]
    deficits: list[tuple]


def _create_mip_model() -> Model:
    """Create and configure a MIP optimization model.

    Precondition:
        none

    Postcondition:
        returns a MIP Model with verbose=0 (no output)
        the relative gap is tight enough that the lowest objective tier still counts

    Returns:
        configured MIP Model instance
    """
    model = Model()
    model.verbose = 0
    model.max_mip_gap = 1e-12
    model.max_mip_gap_abs = 1e-6
    return model


def _model_count(graph: ProductionGraph, node_id: str) -> float:
    """Buildings needed per machine: the machine plus a belt in and out per port"""
    node = graph.nodes[node_id]
    return 1 + 2 * (len(node.inputs) + len(node.outputs))


def _create_machine_variables(
    model: Model, graph: ProductionGraph, scope: list[str], targets: set[str]
) -> tuple[dict, dict]:
    """Create a machine count and its integer ceiling for every node in scope.

    Precondition:
        scope and targets are subsets of graph.nodes

    Postcondition:
        targets are fixed at their current machine count
        every ceiling is an integer variable >= its machine count

    Args:
        model: MIP model to add variables to
        graph: production graph
        scope: nodes in the model, in graph order
        targets: nodes whose count is held fixed

    Returns:
        (node id -> count variable, node id -> ceiling variable)
    """
    machines, ceilings = {}, {}
    for position, node_id in enumerate(scope):
        if node_id not in targets:
            machines[node_id] = model.add_var(name=f"m_{position}", var_type=CONTINUOUS, lb=0)
        else:
            count = graph.nodes[node_id].machine_count
            machines[node_id] = model.add_var(name=f"m_{position}", var_type=CONTINUOUS, lb=count, ub=count)
        ceilings[node_id] = model.add_var(name=f"mc_{position}", var_type=INTEGER, lb=0)
        model += ceilings[node_id] >= machines[node_id]
    return machines, ceilings


def _add_slack(model: Model, name: str, port: Port, upper: float | None = None):
    """Add a slack variable with a binary indicator tied to it by big-M."""
    big_m = max(port.rate_per_machine, 1.0) * BIG_M_FACTOR
    slack = model.add_var(name=name, lb=0) if upper is None else model.add_var(name=name, lb=0, ub=upper)
    indicator = model.add_var(name=f"{name}_on", var_type=BINARY)
    model += slack <= big_m * indicator
    return slack, indicator


def _add_port_constraints(
    model: Model, graph: ProductionGraph, variables: _Variables, strict: bool
) -> None:
    """Add flow conservation for every port of the nodes in the model.

    Precondition:
        variables holds machine variables for the model's nodes and flow
        variables for the connections between them

    Postcondition:
        output: rate * m - sum(flows out) - excess == 0
        input: sum(flows in) + deficit >= rate * m and sum(flows in) <= rate * m
        in strict mode every deficit is fixed at 0

    Args:
        model: MIP model
        graph: production graph
        variables: variables created so far; excess and deficit lists are filled in
        strict: forbid deficits
    """
    for position, (node_id, machines) in enumerate(variables.machines.items()):
        node = graph.nodes[node_id]
        for index, port in node.outputs.items():
            outgoing = [
                variables.flows[c.connection_id]
                for c in graph.connections_from(node_id, index)
                if c.connection_id in variables.flows
            ]
            excess, indicator = _add_slack(model, f"e_{position}_{index}", port)
            model += port.rate_per_machine * machines - xsum(outgoing) - excess == 0
            variables.excess.append((excess, indicator, bool(outgoing)))

        for index, port in node.inputs.items():
            incoming = xsum(
                variables.flows[c.connection_id]
                for c in graph.connections_into(node_id, index)
                if c.connection_id in variables.flows
            )
            deficit, indicator = _add_slack(model, f"d_{position}_{index}", port, 0.0 if strict else None)
            model += incoming + deficit - port.rate_per_machine * machines >= 0
            model += incoming <= port.rate_per_machine * machines
            variables.deficits.append((deficit, indicator))


def _set_objective(model: Model, graph: ProductionGraph, variables: _Variables) -> None:
    connected = [entry for entry in variables.excess if entry[2]]
    unconnected = [entry for entry in variables.excess if not entry[2]]
    model.objective = (
        DEFICIENCY_COUNT_WEIGHT * xsum(indicator for _, indicator in variables.deficits)
        + DEFICIENCY_AMOUNT_WEIGHT * xsum(deficit for deficit, _ in variables.deficits)
        + MODEL_COUNT_WEIGHT * xsum(
            _model_count(graph, node_id) * ceiling for node_id, ceiling in variables.ceilings.items()
        )
        + CONNECTED_EXCESS_COUNT_WEIGHT * xsum(indicator for _, indicator, _ in connected)
        + CONNECTED_EXCESS_AMOUNT_WEIGHT * xsum(excess for excess, _, _ in connected)
        + UNCONNECTED_EXCESS_COUNT_WEIGHT * xsum(indicator for _, indicator, _ in unconnected)
        + UNCONNECTED_EXCESS_AMOUNT_WEIGHT * xsum(excess for excess, _, _ in unconnected)
        + POWER_WEIGHT * xsum(
            graph.nodes[node_id].recipe.power_consumption * machines
            for node_id, machines in variables.machines.items()
        )
    )


def _solve_model(
    graph: ProductionGraph, scope: list[str], targets: set[str], strict: bool
) -> dict[str, float] | None:
    """Build and solve one model; return the optimal counts of non-target nodes or None."""
    model = _create_mip_model()
    machines, ceilings = _create_machine_variables(model, graph, scope, targets)
    in_scope = set(scope)
    flows = {
        connection.connection_id: model.add_var(name=f"f_{position}", lb=0)
        for position, connection in enumerate(graph.all_connections())
        if connection.source_node_id in in_scope and connection.target_node_id in in_scope
    }
    variables = _Variables(machines, ceilings, flows, [], [])
    _add_port_constraints(model, graph, variables, strict)
    _set_objective(model, graph, variables)

    status = model.optimize()
    if status not in (OptimizationStatus.OPTIMAL, OptimizationStatus.FEASIBLE):
        _LOGGER.info("Balancing model (%s) ended with status %s", "strict" if strict else "permissive", status)
        return None
    return {node_id: machines[node_id].x for node_id in scope if node_id not in targets}


def optimize_machine_counts(
    nodes: Iterable[ProductionNode],
    edges: Iterable[Edge],
    target_node_ids: Iterable[str],
    allow_deficiency: bool = False,
    config: SolverConfig | None = None,
) -> ComputeResult:
    """Balance machine counts around the targets with a mixed integer program.

    Precondition:
        nodes and edges describe the canvas; they are never modified

    Postcondition:
        only the targets and the nodes feeding them are modelled
        target counts are unchanged; only their suppliers are resized
        a strict model (no deficits) is solved first; the permissive model is
        tried only when allow_deficiency is set and the strict model fails
        returns success False instead of raising when no model can be solved

    Args:
        nodes: canvas nodes
        edges: canvas edges
        target_node_ids: nodes whose production is held fixed
        allow_deficiency: accept a result that leaves inputs short
        config: solver settings

    Returns:
        ComputeResult with iterations equal to the number of models solved
    """
    config = config or DEFAULT_CONFIG
    solution = ProductionSolver(config).solve(nodes, edges)
    graph = solution.graph
    targets = [target for target in dict.fromkeys(target_node_ids) if target in graph.nodes]
    debug_info = DebugInfo(method="milp", excess_before=solution.excess, deficiency_before=solution.deficiency)
    if not targets:
        return ComputeResult(
            success=False, updates=frozendict(), converged=False, iterations=0,
            stopped_reason="no_targets", message="No target nodes selected", debug_info=debug_info,
        )

    distance = upstream_distances(solution, targets)
    scope = [node_id for node_id in graph.nodes if node_id in distance]
    counts = _solve_model(graph, scope, set(targets), strict=True)
    iterations = 1
    has_deficiency = False
    if counts is None and allow_deficiency:
        counts = _solve_model(graph, scope, set(targets), strict=False)
        iterations = 2
        has_deficiency = True
    if counts is None:
        message = "Cannot balance the targets without leaving inputs deficient"
        if allow_deficiency:
            message = "The balancing model could not be solved"
        return ComputeResult(
            success=False, updates=frozendict(), converged=False, iterations=iterations,
            stopped_reason="infeasible", message=message, has_deficiency=not allow_deficiency,
            debug_info=debug_info,
        )

    updates = frozendict({
        node_id: round(count, config.flow_decimals)
        for node_id, count in counts.items()
        if abs(count - graph.nodes[node_id].machine_count) > config.suggestion_epsilon
    })
    _LOGGER.debug("Balancing model resized %d nodes", len(updates))
    return ComputeResult(
        success=True, updates=updates, converged=True, iterations=iterations,
        stopped_reason="converged", message="Optimal machine counts found",
        has_deficiency=has_deficiency, debug_info=debug_info,
    )
