"""Solve a production network: flows, temperatures, excess, deficiency and suggestions."""

import logging
from dataclasses import dataclass
from typing import Iterable

from excess_analyzer import DeficiencyItem, ExcessItem, NetworkSummary, analyze, summarize
from flow_calculator import FlowCalculator, FlowResult
from graph_builder import ProductionGraph, build_graph
from recipes import Edge, ProductionNode
from solver_config import DEFAULT_CONFIG, SolverConfig
from suggestions import Suggestion, calculate_suggestions
from temperature import (
    TemperatureData,
    apply_temperatures_to_nodes,
    needs_temperature_pass,
    propagate_temperatures,
    temperatures_changed,
)

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)


@dataclass(frozen=True)
class Solution:
    """Result of one solve; never modified after construction.

    nodes holds the snapshot that was actually solved, including propagated
    temperatures. It is what repeated solves should start from.
    """

    graph: ProductionGraph
    flows: FlowResult
    excess: tuple[ExcessItem, ...]
    deficiency: tuple[DeficiencyItem, ...]
    suggestions: tuple[Suggestion, ...]
    temperature_data: TemperatureData | None
    nodes: tuple[ProductionNode, ...]
    summary: NetworkSummary


class ProductionSolver:
    """Runs the solve pipeline and owns the flow cache.

    Independent solvers never share cached flows, so speculative solves can use
    their own instance.
    """

    def __init__(self, config: SolverConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self.flow_calculator = FlowCalculator(config)

    def clear_flow_cache(self) -> None:
        """Invalidate cached flows; call after any node or edge edit."""
        self.flow_calculator.invalidate()

    def _graph_and_flows(self, nodes, edges) -> tuple[ProductionGraph, FlowResult]:
        graph = build_graph(nodes, edges)
        return graph, self.flow_calculator.calculate(graph)

    def solve(
        self,
        nodes: Iterable[ProductionNode],
        edges: Iterable[Edge],
        skip_temperature: bool = False,
        previous_temperature_data: TemperatureData | None = None,
    ) -> Solution:
        """Solve the network.

        Precondition:
            nodes and edges describe the canvas; they are never modified

        Postcondition:
            the temperature pass runs only when the graph has heat sources or
            temperature-dependent machines and skip_temperature is False
            when temperatures change rates, exactly one extra rebuild, reflow and
            repropagation is performed before the final rebuild
            never raises for malformed topology

        Args:
            nodes: canvas nodes
            edges: canvas edges
            skip_temperature: reuse previous_temperature_data instead of propagating
            previous_temperature_data: temperatures from an earlier solve

        Returns:
            Solution
        """
        nodes = tuple(nodes)
        edges = tuple(edges)
        graph, flows = self._graph_and_flows(nodes, edges)
        solved_nodes = nodes
        temperature_data = None

        if skip_temperature:
            temperature_data = previous_temperature_data
        elif needs_temperature_pass(graph):
            temperature_data = propagate_temperatures(graph, flows, self.config)
            solved_nodes = tuple(apply_temperatures_to_nodes(nodes, temperature_data, graph))
            if temperatures_changed(nodes, solved_nodes, self.config.temperature_change_threshold):
                _LOGGER.debug("Temperatures changed rates; recomputing flows")
                graph, flows = self._graph_and_flows(solved_nodes, edges)
                temperature_data = propagate_temperatures(graph, flows, self.config)
                solved_nodes = tuple(apply_temperatures_to_nodes(nodes, temperature_data, graph))
                graph, flows = self._graph_and_flows(solved_nodes, edges)

        report = analyze(graph, flows, self.config)
        suggestions = calculate_suggestions(graph, flows, self.config) if (
            report.excess or report.deficiency
        ) else ()

        return Solution(
            graph=graph,
            flows=flows,
            excess=report.excess,
            deficiency=report.deficiency,
            suggestions=suggestions,
            temperature_data=temperature_data,
            nodes=solved_nodes,
            summary=summarize(report, self.config),
        )


_DEFAULT_SOLVER = ProductionSolver()


def solve(
    nodes: Iterable[ProductionNode],
    edges: Iterable[Edge],
    skip_temperature: bool = False,
    previous_temperature_data: TemperatureData | None = None,
) -> Solution:
    """Solve with the shared default solver. See ProductionSolver.solve."""
    return _DEFAULT_SOLVER.solve(nodes, edges, skip_temperature, previous_temperature_data)


def clear_flow_cache() -> None:
    """Invalidate the shared default solver's flow cache."""
    _DEFAULT_SOLVER.clear_flow_cache()
