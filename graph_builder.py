"""Build a typed production graph from canvas node and edge snapshots."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from heat_sources import (
    DEFAULT_STEAM_TEMPERATURE,
    STEAM_CRACKING_PLANT,
    has_temp_dependent_cycle,
    temp_dependent_cycle_time,
)
from parsing_utils import parse_handle_index
from recipes import (
    VARIABLE,
    VARIABLE_PRODUCT,
    Edge,
    Ingredient,
    ProductionNode,
    Recipe,
    as_number,
    is_special_recipe,
    recipe_uses_steam,
)

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)

PortKey = tuple[str, int]


@dataclass
class Port:
    """one input or output slot of a node with its computed rate"""

    node_id: str
    index: int
    product_id: str
    quantity: float
    rate: float
    rate_per_machine: float
    temperature: float | None = None

    @property
    def key(self) -> PortKey:
        return self.node_id, self.index


@dataclass(frozen=True)
class Connection:
    """a resolved edge between an output port and an input port of the same product"""

    connection_id: str
    product_id: str
    source_node_id: str
    source_index: int
    target_node_id: str
    target_index: int
    source_rate: float
    target_rate: float

    @property
    def source_key(self) -> PortKey:
        return self.source_node_id, self.source_index

    @property
    def target_key(self) -> PortKey:
        return self.target_node_id, self.target_index


@dataclass
class GraphNode:
    """a retained node with its ports keyed by recipe slot index"""

    node_id: str
    recipe: Recipe
    machine_count: float
    cycle_time: float
    inputs: dict[int, Port] = field(default_factory=dict)
    outputs: dict[int, Port] = field(default_factory=dict)

    @property
    def machine_id(self) -> str:
        return self.recipe.machine_id

    @property
    def is_extractor(self) -> bool:
        """single output and no inputs"""
        return not self.inputs and len(self.outputs) == 1


@dataclass
class ProductGraph:
    """all producer ports, consumer ports and connections of one product"""

    producers: list[Port] = field(default_factory=list)
    consumers: list[Port] = field(default_factory=list)
    connections: list[Connection] = field(default_factory=list)


@dataclass
class ProductionGraph:
    """nodes keyed by id plus a per-product index"""

    nodes: dict[str, GraphNode] = field(default_factory=dict)
    products: dict[str, ProductGraph] = field(default_factory=dict)
    _incoming: dict[PortKey, list[Connection]] = field(default_factory=lambda: defaultdict(list))
    _outgoing: dict[PortKey, list[Connection]] = field(default_factory=lambda: defaultdict(list))

    def connections_into(self, node_id: str, index: int) -> list[Connection]:
        """Return the connections feeding an input port."""
        return self._incoming.get((node_id, index), [])

    def connections_from(self, node_id: str, index: int) -> list[Connection]:
        """Return the connections leaving an output port."""
        return self._outgoing.get((node_id, index), [])

    def all_connections(self) -> Iterable[Connection]:
        for product in self.products.values():
            yield from product.connections

    def _product(self, product_id: str) -> ProductGraph:
        if product_id not in self.products:
            self.products[product_id] = ProductGraph()
        return self.products[product_id]


def _resolve_cycle_time(recipe: Recipe) -> float | None:
    """Return the effective cycle time of a recipe, or None if it cannot be solved.

    Precondition:
        recipe is a Recipe

    Postcondition:
        non-special recipes return their positive numeric cycle time or None
        special recipes always return a positive cycle time
        steam-driven machines return the formula value at their steam temperature

    Args:
        recipe: recipe to inspect

    Returns:
        cycle time in seconds, or None if the node must be dropped
    """
    cycle_time = as_number(recipe.cycle_time)
    if cycle_time is not None and cycle_time <= 0:
        cycle_time = None

    if not is_special_recipe(recipe):
        return cycle_time

    base = cycle_time if cycle_time is not None else 1.0
    if not has_temp_dependent_cycle(recipe.machine_id):
        return base
    if recipe.machine_id == STEAM_CRACKING_PLANT and not recipe_uses_steam(recipe):
        return base

    steam_temp = recipe.temp_dependent_input_temp
    if as_number(steam_temp) is None:
        steam_temp = DEFAULT_STEAM_TEMPERATURE
    return temp_dependent_cycle_time(recipe.machine_id, steam_temp, base)


def _build_port(
    node: ProductionNode,
    index: int,
    ingredient: Ingredient,
    cycle_time: float,
) -> Port | None:
    """Build a port with its rate, or None if the slot cannot be solved.

    Precondition:
        cycle_time is positive and finite

    Postcondition:
        returns None for the variable product, variable quantities and
        non-numeric or negative quantities
        otherwise port.rate >= 0

    Args:
        node: owning node
        index: recipe slot index
        ingredient: recipe slot
        cycle_time: effective cycle time of the node

    Returns:
        Port or None
    """
    if ingredient.product_id == VARIABLE_PRODUCT or ingredient.quantity == VARIABLE:
        return None
    quantity = as_number(ingredient.quantity)
    if quantity is None or quantity < 0:
        return None

    nominal = as_number(ingredient.original_quantity)
    if nominal is None:
        nominal = quantity

    divisor = 1.0 if node.recipe.per_second else cycle_time
    return Port(
        node_id=node.node_id,
        index=index,
        product_id=ingredient.product_id,
        quantity=quantity,
        rate=quantity / divisor * node.machine_count,
        rate_per_machine=nominal / divisor,
        temperature=ingredient.temperature,
    )


def _build_node(node: ProductionNode) -> GraphNode | None:
    """Build a graph node, or return None if the node is dropped."""
    machine_count = as_number(node.machine_count)
    if machine_count is None or machine_count < 0:
        _LOGGER.debug("Dropping node %s: invalid machine count %r", node.node_id, node.machine_count)
        return None

    cycle_time = _resolve_cycle_time(node.recipe)
    if cycle_time is None:
        _LOGGER.debug("Dropping node %s: invalid cycle time %r", node.node_id, node.recipe.cycle_time)
        return None

    graph_node = GraphNode(node.node_id, node.recipe, machine_count, cycle_time)
    for index, ingredient in enumerate(node.recipe.inputs):
        if port := _build_port(node, index, ingredient, cycle_time):
            graph_node.inputs[index] = port
    for index, ingredient in enumerate(node.recipe.outputs):
        if port := _build_port(node, index, ingredient, cycle_time):
            graph_node.outputs[index] = port
    return graph_node


def _resolve_edge(graph: ProductionGraph, edge: Edge) -> Connection | None:
    """Resolve an edge into a connection, or return None if it is dangling."""
    source_node = graph.nodes.get(edge.source)
    target_node = graph.nodes.get(edge.target)
    if source_node is None or target_node is None:
        _LOGGER.debug("Skipping edge %s: endpoint node is absent", edge.edge_id)
        return None

    try:
        source_index = parse_handle_index(edge.source_handle, "output")
        target_index = parse_handle_index(edge.target_handle, "input")
    except ValueError as exc:
        _LOGGER.debug("Skipping edge %s: %s", edge.edge_id, exc)
        return None

    source_port = source_node.outputs.get(source_index)
    target_port = target_node.inputs.get(target_index)
    if source_port is None or target_port is None:
        _LOGGER.debug("Skipping edge %s: port was dropped", edge.edge_id)
        return None
    if source_port.product_id != target_port.product_id:
        _LOGGER.debug(
            "Skipping edge %s: product mismatch %s -> %s",
            edge.edge_id, source_port.product_id, target_port.product_id,
        )
        return None

    if source_port.temperature is not None:
        target_port.temperature = source_port.temperature

    return Connection(
        connection_id=edge.edge_id,
        product_id=source_port.product_id,
        source_node_id=source_node.node_id,
        source_index=source_index,
        target_node_id=target_node.node_id,
        target_index=target_index,
        source_rate=source_port.rate,
        target_rate=target_port.rate,
    )


def build_graph(nodes: Iterable[ProductionNode], edges: Iterable[Edge]) -> ProductionGraph:
    """Build the production graph for one solve.

    Precondition:
        nodes and edges are snapshots; they are never modified

    Postcondition:
        unsolvable nodes, ports and dangling edges are absent from the graph
        every connection is registered in exactly its product's bucket
        never raises for malformed topology

    Args:
        nodes: canvas nodes
        edges: canvas edges

    Returns:
        ProductionGraph
    """
    graph = ProductionGraph()

    for node in nodes:
        graph_node = _build_node(node)
        if graph_node is None:
            continue
        graph.nodes[node.node_id] = graph_node
        for port in graph_node.inputs.values():
            graph._product(port.product_id).consumers.append(port)
        for port in graph_node.outputs.values():
            graph._product(port.product_id).producers.append(port)

    for edge in edges:
        connection = _resolve_edge(graph, edge)
        if connection is None:
            continue
        graph._product(connection.product_id).connections.append(connection)
        graph._outgoing[connection.source_key].append(connection)
        graph._incoming[connection.target_key].append(connection)

    _LOGGER.debug(
        "Built graph with %d nodes and %d products", len(graph.nodes), len(graph.products)
    )
    return graph
