"""Per-product maximum flow over the connections of a production graph.

Each product is split into independent connected components with union-find.
Every component is solved with Dinic's algorithm between a virtual source
feeding the output ports and a virtual sink drained by the input ports.
Component results are cached by their exact port and connection sets.
"""

import logging
import math
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass
from typing import Generic, Hashable, Optional, TypeVar

from frozendict import frozendict

from graph_builder import Connection, ProductionGraph
from solver_config import DEFAULT_CONFIG, SolverConfig

_LOGGER = logging.getLogger("recipeflow")
_LOGGER.setLevel(logging.DEBUG)

K = TypeVar("K")
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """LRU cache with configurable max size"""

    def __init__(self, max_size: int = 100) -> None:
        self.max_size = max_size
        self._cache: OrderedDict[K, V] = OrderedDict()

    def __contains__(self, key: K) -> bool:
        """Check if key is in cache"""
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def __getitem__(self, key: K) -> V:
        """Get item and move to end (most recently used)"""
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        raise KeyError(key)

    def __setitem__(self, key: K, value: V) -> None:
        """Set item, evicting LRU if cache is full"""
        if key in self._cache:
            self._cache.pop(key)
        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
        self._cache[key] = value

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Get item with default, moving to end if found"""
        try:
            return self[key]
        except KeyError:
            return default

    def clear(self) -> None:
        """Drop every entry"""
        self._cache.clear()


class UnionFind:
    """disjoint sets over hashable items with path compression and union by size"""

    def __init__(self) -> None:
        self._parent: dict[Hashable, Hashable] = {}
        self._size: dict[Hashable, int] = {}

    def find(self, item: Hashable) -> Hashable:
        if item not in self._parent:
            self._parent[item] = item
            self._size[item] = 1
            return item
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: Hashable, b: Hashable) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]


class FlowNetwork:
    """residual network solved with Dinic's blocking-flow algorithm"""

    def __init__(self, size: int, residual_epsilon: float = 1e-15) -> None:
        self.residual_epsilon = residual_epsilon
        self._adjacency: list[list[int]] = [[] for _ in range(size)]
        self._head: list[int] = []
        self._capacity: list[float] = []

    def add_edge(self, tail: int, head: int, capacity: float) -> int:
        """Add an edge and its residual twin; return the edge handle."""
        handle = len(self._head)
        self._head.append(head)
        self._capacity.append(capacity)
        self._adjacency[tail].append(handle)
        self._head.append(tail)
        self._capacity.append(0.0)
        self._adjacency[head].append(handle + 1)
        return handle

    def flow_on(self, handle: int) -> float:
        """Flow pushed along an edge, read from its residual twin"""
        return self._capacity[handle ^ 1]

    def _levels(self, source: int, sink: int) -> list[int] | None:
        """BFS levels over residual edges, or None if the sink is unreachable."""
        level = [-1] * len(self._adjacency)
        level[source] = 0
        queue = deque([source])
        while queue:
            node = queue.popleft()
            for handle in self._adjacency[node]:
                head = self._head[handle]
                if level[head] < 0 and self._capacity[handle] > self.residual_epsilon:
                    level[head] = level[node] + 1
                    queue.append(head)
        return level if level[sink] >= 0 else None

    def _augment(self, source: int, sink: int, level: list[int], cursor: list[int]) -> float:
        """Push flow along one level-increasing path; return 0 when none remains."""
        path: list[int] = []
        node = source
        while True:
            if node == sink:
                pushed = min(self._capacity[handle] for handle in path)
                for handle in path:
                    self._capacity[handle] -= pushed
                    self._capacity[handle ^ 1] += pushed
                return pushed

            edges = self._adjacency[node]
            advanced = False
            while cursor[node] < len(edges):
                handle = edges[cursor[node]]
                head = self._head[handle]
                if self._capacity[handle] > self.residual_epsilon and level[head] == level[node] + 1:
                    path.append(handle)
                    node = head
                    advanced = True
                    break
                cursor[node] += 1

            if not advanced:
                if node == source:
                    return 0.0
                # dead end
                level[node] = -1
                handle = path.pop()
                node = self._head[handle ^ 1]
                cursor[node] += 1

    def max_flow(self, source: int, sink: int) -> float:
        """Saturate the network and return the total flow from source to sink."""
        total = 0.0
        while (level := self._levels(source, sink)) is not None:
            cursor = [0] * len(self._adjacency)
            while (pushed := self._augment(source, sink, level, cursor)) > 0:
                total += pushed
        return total


@dataclass(frozen=True)
class ConnectionFlow:
    """flow on one connection and the fraction of each endpoint it covers"""

    flow_rate: float
    supply_ratio: float
    demand_ratio: float


@dataclass(frozen=True)
class InputFlow:
    connected: float
    needed: float


@dataclass(frozen=True)
class OutputFlow:
    connected: float
    produced: float


@dataclass(frozen=True)
class NodeFlow:
    """per-port totals of one node, keyed by recipe slot index"""

    input_flows: frozendict
    output_flows: frozendict


@dataclass(frozen=True)
class ProductFlow:
    total_production: float
    total_consumption: float
    connected_flow: float


@dataclass(frozen=True)
class FlowResult:
    """flows keyed by product id, connection id and node id"""

    by_product: frozendict
    by_connection: frozendict
    by_node: frozendict


def _component_key(product_id: str, connections: list[Connection]) -> tuple:
    """Order-independent cache key of one component"""
    ports = frozenset(
        [("output", c.source_node_id, c.source_index, c.source_rate) for c in connections]
        + [("input", c.target_node_id, c.target_index, c.target_rate) for c in connections]
    )
    edges = frozenset(
        (c.connection_id, c.source_node_id, c.source_index, c.target_node_id, c.target_index)
        for c in connections
    )
    return product_id, ports, edges


def _components(connections: list[Connection]) -> list[list[Connection]]:
    """Group a product's connections into connected components of ports.

    Precondition:
        every connection belongs to the same product

    Postcondition:
        returns the connections partitioned so that two connections share a
        group exactly when their ports are linked by a chain of connections
        groups keep the input order of their connections

    Args:
        connections: connections of one product

    Returns:
        list of connection groups
    """
    sets = UnionFind()
    for connection in connections:
        sets.union(("output",) + connection.source_key, ("input",) + connection.target_key)

    groups: dict[Hashable, list[Connection]] = {}
    for connection in connections:
        root = sets.find(("output",) + connection.source_key)
        groups.setdefault(root, []).append(connection)
    return list(groups.values())


def _solve_component(connections: list[Connection], config: SolverConfig) -> frozendict:
    """Compute the maximum flow of one component.

    Precondition:
        connections form one connected component of one product

    Postcondition:
        returns connection id -> flow with 0 <= flow <= min(source rate, target rate)
        (summed over parallel connections that share both ports)

    Args:
        connections: connections of the component
        config: solver tolerances

    Returns:
        frozendict mapping connection id to raw flow
    """
    index: dict[tuple, int] = {}
    for connection in connections:
        index.setdefault(("output",) + connection.source_key, len(index) + 2)
        index.setdefault(("input",) + connection.target_key, len(index) + 2)

    source, sink = 0, 1
    network = FlowNetwork(len(index) + 2, config.residual_epsilon)
    added_ports: set[tuple] = set()
    for connection in connections:
        output_key = ("output",) + connection.source_key
        input_key = ("input",) + connection.target_key
        if output_key not in added_ports:
            network.add_edge(source, index[output_key], connection.source_rate)
            added_ports.add(output_key)
        if input_key not in added_ports:
            network.add_edge(index[input_key], sink, connection.target_rate)
            added_ports.add(input_key)

    handles = {
        connection.connection_id: network.add_edge(
            index[("output",) + connection.source_key],
            index[("input",) + connection.target_key],
            math.inf,
        )
        for connection in connections
    }
    network.max_flow(source, sink)
    return frozendict({cid: network.flow_on(handle) for cid, handle in handles.items()})


class FlowCalculator:
    """Computes connected flows and owns the component cache.

    Call invalidate() whenever nodes or edges change.
    """

    def __init__(self, config: SolverConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self._cache: LRUCache[tuple, frozendict] = LRUCache(config.cache_size)
        self.hits = 0
        self.misses = 0

    def invalidate(self) -> None:
        """Drop every cached component result."""
        self._cache.clear()
        _LOGGER.debug("Flow cache cleared")

    def _clean(self, value: float) -> float:
        """Clamp floating noise to zero and round."""
        if abs(value) < self.config.flow_epsilon:
            return 0.0
        return round(value, self.config.flow_decimals)

    def _component_flows(self, product_id: str, connections: list[Connection]) -> frozendict:
        key = _component_key(product_id, connections)
        if (cached := self._cache.get(key)) is not None:
            self.hits += 1
            return cached
        self.misses += 1
        flows = _solve_component(connections, self.config)
        self._cache[key] = flows
        return flows

    def calculate(self, graph: ProductionGraph) -> FlowResult:
        """Compute flows for every product of the graph.

        Precondition:
            graph was produced by build_graph

        Postcondition:
            every connection has 0 <= flow_rate <= min(source_rate, target_rate)
            flows below flow_epsilon are exactly 0
            every retained node has an entry in by_node
            components of the same product never influence each other

        Args:
            graph: production graph

        Returns:
            FlowResult
        """
        raw: dict[str, float] = {}
        for product_id, product in graph.products.items():
            if not product.connections:
                continue
            for component in _components(product.connections):
                raw.update(self._component_flows(product_id, component))

        by_connection = {}
        into: dict[tuple, float] = defaultdict(float)
        out_of: dict[tuple, float] = defaultdict(float)
        for connection in graph.all_connections():
            flow = min(
                self._clean(raw.get(connection.connection_id, 0.0)),
                connection.source_rate,
                connection.target_rate,
            )
            by_connection[connection.connection_id] = ConnectionFlow(
                flow_rate=flow,
                supply_ratio=flow / connection.source_rate if connection.source_rate > 0 else 0.0,
                demand_ratio=flow / connection.target_rate if connection.target_rate > 0 else 0.0,
            )
            into[connection.target_key] += flow
            out_of[connection.source_key] += flow

        by_node = {
            node_id: NodeFlow(
                input_flows=frozendict({
                    index: InputFlow(min(self._clean(into[(node_id, index)]), port.rate), port.rate)
                    for index, port in node.inputs.items()
                }),
                output_flows=frozendict({
                    index: OutputFlow(min(self._clean(out_of[(node_id, index)]), port.rate), port.rate)
                    for index, port in node.outputs.items()
                }),
            )
            for node_id, node in graph.nodes.items()
        }

        by_product = {
            product_id: ProductFlow(
                total_production=sum(port.rate for port in product.producers),
                total_consumption=sum(port.rate for port in product.consumers),
                connected_flow=min(
                    self._clean(sum(by_connection[c.connection_id].flow_rate for c in product.connections)),
                    sum(port.rate for port in product.producers),
                ),
            )
            for product_id, product in graph.products.items()
        }

        _LOGGER.debug(
            "Computed flows for %d connections (cache hits %d, misses %d)",
            len(by_connection), self.hits, self.misses,
        )
        return FlowResult(frozendict(by_product), frozendict(by_connection), frozendict(by_node))
