"""Scale the nodes connected to a resized node by the same ratio."""

import logging
from collections import deque
from typing import Iterable

from graph_builder import ProductionGraph, build_graph
from recipes import Edge, ProductionNode

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)

EPSILON = 1e-10
MAX_PASSES = 10
RATIO_CHANGE_THRESHOLD = 1e-4


def _neighbours(graph: ProductionGraph, node_id: str) -> list[str]:
    """Consumers of the node's outputs followed by producers of its inputs."""
    node = graph.nodes[node_id]
    found = []
    for index in node.outputs:
        found.extend(c.target_node_id for c in graph.connections_from(node_id, index))
    for index in node.inputs:
        found.extend(c.source_node_id for c in graph.connections_into(node_id, index))
    return found


def _reachable(graph: ProductionGraph, start: str) -> list[str]:
    """Every node connected to start in either direction, breadth first."""
    visited = {start}
    order = [start]
    queue = deque([start])
    while queue:
        for neighbour in _neighbours(graph, queue.popleft()):
            if neighbour not in visited:
                visited.add(neighbour)
                order.append(neighbour)
                queue.append(neighbour)
    return order


def propagate_machine_count(
    nodes: Iterable[ProductionNode],
    edges: Iterable[Edge],
    node_id: str,
    new_count: float,
) -> dict[str, float]:
    """Resize one node and scale every connected node by the same ratio.

    Precondition:
        nodes and edges describe the canvas; they are never modified

    Postcondition:
        the resized node maps to new_count
        every other node reachable through connections takes the largest ratio
        voted by its already-scaled neighbours
        nodes running zero machines are never resized
        when the resized node currently runs zero machines, nothing else changes

    Args:
        nodes: canvas nodes
        edges: canvas edges
        node_id: node the player resized
        new_count: its new machine count

    Returns:
        node id -> new machine count, for the resized node and every scaled node

    Raises:
        ValueError: if node_id is not a solvable node
    """
    graph = build_graph(nodes, edges)
    if node_id not in graph.nodes:
        raise ValueError(f"Unknown node: {node_id}")

    old_count = graph.nodes[node_id].machine_count
    counts = {node_id: new_count}
    if old_count <= EPSILON:
        return counts

    ratios = {node_id: new_count / old_count}
    members = _reachable(graph, node_id)
    for _ in range(MAX_PASSES):
        changed = False
        for member in members:
            if member == node_id:
                continue
            current_count = graph.nodes[member].machine_count
            if current_count <= EPSILON:
                continue
            votes = [ratios[n] for n in _neighbours(graph, member) if n in ratios]
            if not votes:
                continue
            ratio = max(votes)
            if abs(ratio - ratios.get(member, 1.0)) > RATIO_CHANGE_THRESHOLD:
                ratios[member] = ratio
                counts[member] = current_count * ratio
                changed = True
        if not changed:
            break

    _LOGGER.debug("Resizing %s scaled %d connected nodes", node_id, len(counts) - 1)
    return counts


def propagate_from_handle(
    nodes: Iterable[ProductionNode],
    edges: Iterable[Edge],
    node_id: str,
    handle_type: str,
    handle_index: int,
    new_count: float,
) -> dict[str, float]:
    """Like propagate_machine_count, but leave the nodes on the given handle alone."""
    nodes = tuple(nodes)
    edges = tuple(edges)
    graph = build_graph(nodes, edges)
    if handle_type == "input":
        excluded = {c.source_node_id for c in graph.connections_into(node_id, handle_index)}
    else:
        excluded = {c.target_node_id for c in graph.connections_from(node_id, handle_index)}
    counts = propagate_machine_count(nodes, edges, node_id, new_count)
    return {n: count for n, count in counts.items() if n not in excluded}
