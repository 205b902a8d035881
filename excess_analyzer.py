"""Classify products as balanced, in excess or deficient."""

import logging
from dataclasses import dataclass

from flow_calculator import FlowResult
from graph_builder import ProductionGraph
from solver_config import DEFAULT_CONFIG, SolverConfig

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)


@dataclass(frozen=True)
class ExcessItem:
    """production of a product not absorbed by connected consumers"""

    product_id: str
    excess_rate: float
    percentage: float
    total_production: float
    connected_flow: float


@dataclass(frozen=True)
class AffectedPort:
    node_id: str
    input_index: int
    shortage: float


@dataclass(frozen=True)
class DeficiencyItem:
    """consumption need of a product not met by connected producers"""

    product_id: str
    deficiency_rate: float
    percentage: float
    total_consumption: float
    affected_nodes: tuple[AffectedPort, ...]


@dataclass(frozen=True)
class ExcessReport:
    excess: tuple[ExcessItem, ...]
    deficiency: tuple[DeficiencyItem, ...]


@dataclass(frozen=True)
class NetworkSummary:
    """informational overview of one solve"""

    excess_count: int
    deficiency_count: int
    total_excess_rate: float
    total_deficiency_rate: float
    health_score: float

    @property
    def is_balanced(self) -> bool:
        return self.excess_count == 0 and self.deficiency_count == 0


def is_significant(difference: float, a: float, b: float, config: SolverConfig = DEFAULT_CONFIG) -> bool:
    """True if difference exceeds the tolerance for values of magnitude a and b.

    The tolerance is relative_tolerance of the larger magnitude, but never less
    than absolute_tolerance. A difference exactly at the tolerance is not significant.
    """
    tolerance = max(config.relative_tolerance * max(abs(a), abs(b)), config.absolute_tolerance)
    return difference > tolerance


def _percentage(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _find_excess(flows: FlowResult, config: SolverConfig) -> list[ExcessItem]:
    items = []
    for product_id, product in flows.by_product.items():
        excess = product.total_production - product.connected_flow
        if not is_significant(excess, product.total_production, product.connected_flow, config):
            continue
        items.append(ExcessItem(
            product_id=product_id,
            excess_rate=excess,
            percentage=_percentage(excess, product.total_production),
            total_production=product.total_production,
            connected_flow=product.connected_flow,
        ))
    return items


def _find_deficiency(
    graph: ProductionGraph, flows: FlowResult, config: SolverConfig
) -> list[DeficiencyItem]:
    """Accumulate per-port shortages into one record per product.

    Precondition:
        flows were computed for graph

    Postcondition:
        each significant port shortage contributes to exactly one record
        affected ports keep graph node order

    Args:
        graph: production graph
        flows: flow result
        config: tolerances

    Returns:
        unsorted deficiency records
    """
    shortages: dict[str, list[AffectedPort]] = {}
    for node_id, node in graph.nodes.items():
        node_flow = flows.by_node[node_id]
        for index, port in node.inputs.items():
            input_flow = node_flow.input_flows[index]
            shortage = input_flow.needed - input_flow.connected
            if is_significant(shortage, input_flow.needed, input_flow.connected, config):
                shortages.setdefault(port.product_id, []).append(AffectedPort(node_id, index, shortage))

    items = []
    for product_id, affected in shortages.items():
        rate = sum(port.shortage for port in affected)
        total_consumption = flows.by_product[product_id].total_consumption
        items.append(DeficiencyItem(
            product_id=product_id,
            deficiency_rate=rate,
            percentage=_percentage(rate, total_consumption),
            total_consumption=total_consumption,
            affected_nodes=tuple(affected),
        ))
    return items


def analyze(
    graph: ProductionGraph, flows: FlowResult, config: SolverConfig = DEFAULT_CONFIG
) -> ExcessReport:
    """Determine excess and deficiency for every product.

    Precondition:
        flows were computed for graph

    Postcondition:
        both lists are sorted by rate, largest first (product id breaks ties)
        only mismatches beyond the significance tolerance are reported

    Args:
        graph: production graph
        flows: flow result
        config: tolerances

    Returns:
        ExcessReport
    """
    excess = sorted(_find_excess(flows, config), key=lambda item: (-item.excess_rate, item.product_id))
    deficiency = sorted(
        _find_deficiency(graph, flows, config), key=lambda item: (-item.deficiency_rate, item.product_id)
    )
    _LOGGER.debug("Found %d excess and %d deficient products", len(excess), len(deficiency))
    return ExcessReport(tuple(excess), tuple(deficiency))


def health_score(report: ExcessReport, config: SolverConfig = DEFAULT_CONFIG) -> float:
    """Score from 0 to 100; deficiencies cost more than excesses."""
    penalty = (
        config.deficiency_penalty * len(report.deficiency)
        + config.excess_penalty * len(report.excess)
    )
    return max(0.0, 100.0 - penalty)


def summarize(report: ExcessReport, config: SolverConfig = DEFAULT_CONFIG) -> NetworkSummary:
    return NetworkSummary(
        excess_count=len(report.excess),
        deficiency_count=len(report.deficiency),
        total_excess_rate=sum(item.excess_rate for item in report.excess),
        total_deficiency_rate=sum(item.deficiency_rate for item in report.deficiency),
        health_score=health_score(report, config),
    )
