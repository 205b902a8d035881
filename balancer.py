"""Iteratively adjust machine counts until the network around target nodes balances."""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable

from frozendict import frozendict

from excess_analyzer import DeficiencyItem, ExcessItem, is_significant
from production_solver import ProductionSolver, Solution
from recipes import Edge, ProductionNode
from solver_config import DEFAULT_CONFIG, SolverConfig
from suggestions import CONNECTED_SHORTAGE, DECREASE, EXCESS, round_machine_count

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)

CONVERGED = "converged"
NO_CHANGES = "no_changes"
MAX_ITERATIONS = "max_iterations"
CANCELLED = "cancelled"
NO_TARGETS = "no_targets"


@dataclass(frozen=True)
class IterationLog:
    """updates applied in one balancer iteration"""

    iteration: int
    phase: str
    suggestion_count: int
    updates: frozendict


@dataclass
class DebugInfo:
    """observations collected when debug mode is on; never read by the balancer"""

    method: str = "heuristic"
    excess_before: tuple[ExcessItem, ...] = ()
    deficiency_before: tuple[DeficiencyItem, ...] = ()
    excess_after: tuple[ExcessItem, ...] = ()
    deficiency_after: tuple[DeficiencyItem, ...] = ()
    log: list[IterationLog] = field(default_factory=list)


@dataclass(frozen=True)
class ComputeResult:
    """Outcome of a balancing run.

    updates maps node id to its new machine count and only lists changed nodes.
    The caller applies them to its own node store.
    """

    success: bool
    updates: frozendict
    converged: bool
    iterations: int
    stopped_reason: str
    message: str = ""
    has_deficiency: bool = False
    deficient_nodes: tuple[str, ...] = ()
    debug_info: DebugInfo | None = None


def upstream_distances(solution: Solution, targets: Iterable[str]) -> dict[str, int]:
    """BFS distance from the nearest target to every node feeding it"""
    graph = solution.graph
    distance = {target: 0 for target in targets if target in graph.nodes}
    queue = deque(distance)
    while queue:
        node_id = queue.popleft()
        for index in graph.nodes[node_id].inputs:
            for connection in graph.connections_into(node_id, index):
                if connection.source_node_id not in distance:
                    distance[connection.source_node_id] = distance[node_id] + 1
                    queue.append(connection.source_node_id)
    return distance


def _target_scale(solution: Solution, target: str, config: SolverConfig) -> float | None:
    """New machine count for a target overproducing into its connections, or None.

    Only connected outputs count; every one of them must exceed the threshold.
    """
    graph = solution.graph
    node = graph.nodes.get(target)
    if node is None or node.machine_count <= config.suggestion_epsilon:
        return None
    ratios = []
    for index in node.outputs:
        if not graph.connections_from(target, index):
            continue
        output_flow = solution.flows.by_node[target].output_flows[index]
        if output_flow.produced <= 0:
            continue
        unused = output_flow.produced - output_flow.connected
        if unused <= config.target_excess_threshold * output_flow.produced:
            return None
        ratios.append(output_flow.connected / output_flow.produced)
    if not ratios:
        return None
    new_count = round_machine_count(node.machine_count * max(ratios))
    return new_count if new_count > config.suggestion_epsilon else None


def _bottleneck_inputs(solution: Solution, node_id: str, config: SolverConfig) -> list[int]:
    """Inputs whose supply ratio is at or near the node's minimum.

    Inputs fed only by the node itself are ignored.
    """
    graph = solution.graph
    ratios = {}
    for index in graph.nodes[node_id].inputs:
        input_flow = solution.flows.by_node[node_id].input_flows[index]
        shortage = input_flow.needed - input_flow.connected
        if not is_significant(shortage, input_flow.needed, input_flow.connected, config):
            continue
        suppliers = graph.connections_into(node_id, index)
        if suppliers and all(c.source_node_id == node_id for c in suppliers):
            continue
        ratios[index] = input_flow.connected / input_flow.needed
    if not ratios:
        return []
    lowest = min(ratios.values())
    return [index for index, ratio in ratios.items() if ratio <= lowest + config.bottleneck_ratio_tolerance]


def _plan_updates(
    solution: Solution, targets: list[str], config: SolverConfig
) -> tuple[dict[str, float], str]:
    """Choose this iteration's machine-count updates.

    Precondition:
        solution has at least one suggestion

    Postcondition:
        overproducing targets are scaled down and their suppliers left alone
        every other target's suppliers are processed closest first
        each node receives at most one update (the largest requested count)
        a node updated this iteration is not processed as a consumer

    Args:
        solution: current solve
        targets: target node ids
        config: balancer settings

    Returns:
        (node id -> new count, phase name)
    """
    updates: dict[str, float] = {}
    for target in targets:
        if (new_count := _target_scale(solution, target, config)) is not None:
            updates[target] = new_count
    if updates:
        return updates, "target_excess"

    by_trigger: dict[tuple[str, int], list] = {}
    for suggestion in solution.suggestions:
        if suggestion.reason == CONNECTED_SHORTAGE:
            by_trigger.setdefault((suggestion.trigger_node_id, suggestion.trigger_index), []).append(suggestion)

    distance = upstream_distances(solution, targets)
    position = {node_id: index for index, node_id in enumerate(solution.graph.nodes)}
    for node_id in sorted(distance, key=lambda n: (distance[n], position[n])):
        if node_id in updates:
            continue
        for index in _bottleneck_inputs(solution, node_id, config):
            for suggestion in by_trigger.get((node_id, index), ()):
                current = updates.get(suggestion.node_id, 0.0)
                updates[suggestion.node_id] = max(current, suggestion.suggested_machine_count)
    return updates, "bottleneck"


def _cleanup_updates(solution: Solution, targets: list[str]) -> dict[str, float]:
    """Shrink single-output producers that overproduce, extractors first."""
    graph = solution.graph
    candidates = [
        suggestion for suggestion in solution.suggestions
        if suggestion.adjustment == DECREASE
        and suggestion.reason == EXCESS
        and suggestion.node_id not in targets
        and len(graph.nodes[suggestion.node_id].outputs) == 1
    ]
    candidates.sort(key=lambda s: not graph.nodes[s.node_id].is_extractor)
    updates: dict[str, float] = {}
    for suggestion in candidates:
        updates.setdefault(suggestion.node_id, suggestion.suggested_machine_count)
    return updates


def _deficient_nodes(solution: Solution, relevant: Iterable[str]) -> tuple[str, ...]:
    relevant = set(relevant)
    found = []
    for item in solution.deficiency:
        for port in item.affected_nodes:
            if port.node_id in relevant and port.node_id not in found:
                found.append(port.node_id)
    return tuple(found)


class _Run:
    """state of one balancing run"""

    def __init__(self, nodes, edges, solver: ProductionSolver) -> None:
        self.edges = edges
        self.solver = solver
        self.first = solver.solve(nodes, edges)
        self.base_nodes = self.first.nodes
        self.original = {node.node_id: node.machine_count for node in nodes}
        self.counts = dict(self.original)

    def solve(self) -> Solution:
        current = [node.with_machine_count(self.counts[node.node_id]) for node in self.base_nodes]
        return self.solver.solve(
            current, self.edges,
            skip_temperature=True,
            previous_temperature_data=self.first.temperature_data,
        )

    def apply(self, updates: dict[str, float], epsilon: float) -> dict[str, float]:
        """Apply updates that actually change a count; return them."""
        applied = {
            node_id: count for node_id, count in updates.items()
            if abs(count - self.counts[node_id]) > epsilon
        }
        self.counts.update(applied)
        return applied

    def changed_counts(self, epsilon: float) -> frozendict:
        return frozendict({
            node_id: count for node_id, count in self.counts.items()
            if abs(count - self.original[node_id]) > epsilon
        })


def compute_machines(
    nodes: Iterable[ProductionNode],
    edges: Iterable[Edge],
    target_node_ids: Iterable[str],
    allow_deficiency: bool = False,
    config: SolverConfig | None = None,
    debug: bool = False,
    should_cancel: Callable[[], bool] | None = None,
    solver: ProductionSolver | None = None,
) -> ComputeResult:
    """Balance machine counts around the target nodes.

    Precondition:
        nodes and edges describe the canvas; they are never modified

    Postcondition:
        returns after at most config.max_iterations iterations plus one cleanup pass
        stopped_reason is converged, no_changes, max_iterations, cancelled or no_targets
        without allow_deficiency, a remaining deficiency on a target or its
        suppliers yields success False and no updates
        never raises for malformed topology

    Args:
        nodes: canvas nodes
        edges: canvas edges
        target_node_ids: nodes whose production the balancer works towards
        allow_deficiency: accept a result that leaves inputs short
        config: solver settings
        debug: collect before/after snapshots and a per-iteration update log
        should_cancel: polled once per iteration; returning True abandons the run
        solver: solver whose flow cache to use; a fresh one by default

    Returns:
        ComputeResult
    """
    config = config or DEFAULT_CONFIG
    nodes = tuple(nodes)
    edges = tuple(edges)
    known = {node.node_id for node in nodes}
    targets = [target for target in dict.fromkeys(target_node_ids) if target in known]
    if not targets:
        return ComputeResult(
            success=False, updates=frozendict(), converged=False, iterations=0,
            stopped_reason=NO_TARGETS, message="No target nodes selected",
        )

    run = _Run(nodes, edges, solver or ProductionSolver(config))
    debug_info = DebugInfo(
        excess_before=run.first.excess, deficiency_before=run.first.deficiency
    ) if debug else None

    solution = run.first
    iterations = 0
    no_change_streak = 0
    stopped_reason = MAX_ITERATIONS
    converged = False
    pending = False

    while iterations < config.max_iterations:
        if should_cancel is not None and should_cancel():
            stopped_reason = CANCELLED
            break
        iterations += 1
        if iterations > 1:
            solution = run.solve()
        if not solution.suggestions:
            converged = True
            stopped_reason = CONVERGED
            break

        updates, phase = _plan_updates(solution, targets, config)
        applied = run.apply(updates, config.suggestion_epsilon)
        _LOGGER.debug("Iteration %d (%s): %d updates", iterations, phase, len(applied))
        if debug_info is not None:
            debug_info.log.append(
                IterationLog(iterations, phase, len(solution.suggestions), frozendict(applied))
            )
        pending = bool(applied)
        if applied:
            no_change_streak = 0
            continue
        no_change_streak += 1
        if no_change_streak >= config.no_change_limit:
            stopped_reason = NO_CHANGES
            break

    if stopped_reason == CANCELLED:
        _LOGGER.info("Balancing cancelled after %d iterations", iterations)
        return ComputeResult(
            success=False, updates=frozendict(), converged=False, iterations=iterations,
            stopped_reason=CANCELLED, message="Balancing was cancelled", debug_info=debug_info,
        )

    if not converged:
        if pending:
            solution = run.solve()
        if cleanup := run.apply(_cleanup_updates(solution, targets), config.suggestion_epsilon):
            if debug_info is not None:
                debug_info.log.append(
                    IterationLog(iterations, "cleanup", len(solution.suggestions), frozendict(cleanup))
                )
            solution = run.solve()
        if not solution.suggestions:
            converged = True
            stopped_reason = CONVERGED
        else:
            _LOGGER.warning("Balancing stopped without converging (%s)", stopped_reason)

    if debug_info is not None:
        debug_info.excess_after = solution.excess
        debug_info.deficiency_after = solution.deficiency

    relevant = upstream_distances(solution, targets)
    deficient = _deficient_nodes(solution, relevant)
    if deficient and not allow_deficiency:
        return ComputeResult(
            success=False, updates=frozendict(), converged=converged, iterations=iterations,
            stopped_reason=stopped_reason,
            message="Cannot balance the targets without leaving inputs deficient",
            has_deficiency=True, deficient_nodes=deficient, debug_info=debug_info,
        )

    message = "Converged" if converged else f"Stopped without converging ({stopped_reason})"
    return ComputeResult(
        success=True,
        updates=run.changed_counts(config.suggestion_epsilon),
        converged=converged,
        iterations=iterations,
        stopped_reason=stopped_reason,
        message=message,
        has_deficiency=bool(deficient),
        deficient_nodes=deficient,
        debug_info=debug_info,
    )
