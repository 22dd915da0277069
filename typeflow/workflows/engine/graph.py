import math
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from typeflow.workflows.engine.definitions import Connection, Node
from typeflow.workflows.engine.errors import CyclicGraphError, NoTriggerNodeError, NodeNotFoundError


class WorkflowGraph:
    """Static view over a workflow's nodes and connections. Pure, no side effects."""

    def __init__(self, nodes: List[Node], connections: List[Connection]):
        self.nodes = list(nodes)
        self.connections = list(connections)
        self.node_map: Dict[str, Node] = {node.id: node for node in self.nodes}
        self._incoming: Dict[str, List[Connection]] = {node.id: [] for node in self.nodes}
        self._outgoing: Dict[str, List[Connection]] = {node.id: [] for node in self.nodes}
        for conn in self.connections:
            # edges pointing at unknown nodes are ignored
            if conn.source_node_id in self.node_map and conn.target_node_id in self.node_map:
                self._outgoing[conn.source_node_id].append(conn)
                self._incoming[conn.target_node_id].append(conn)

    def get_node(self, node_id: str) -> Node:
        node = self.node_map.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def incoming(self, node_id: str) -> List[Connection]:
        return self._incoming.get(node_id, [])

    def outgoing(self, node_id: str) -> List[Connection]:
        return self._outgoing.get(node_id, [])

    def successors(self, node_id: str) -> List[str]:
        """Direct successors, in connection order, without duplicates."""
        result: List[str] = []
        for conn in self.outgoing(node_id):
            if conn.target_node_id not in result:
                result.append(conn.target_node_id)
        return result

    def direct_predecessors(self, node_id: str) -> List[str]:
        result: List[str] = []
        for conn in self.incoming(node_id):
            if conn.source_node_id not in result:
                result.append(conn.source_node_id)
        return result

    def predecessors(self, node_id: str) -> Set[str]:
        """All transitive ancestors of a node (BFS over incoming edges)."""
        visited: Set[str] = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for conn in self.incoming(current):
                source = conn.source_node_id
                if source not in visited:
                    visited.add(source)
                    queue.append(source)
        visited.discard(node_id)
        return visited

    def descendants(self, node_id: str) -> Set[str]:
        visited: Set[str] = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for conn in self.outgoing(current):
                target = conn.target_node_id
                if target not in visited:
                    visited.add(target)
                    queue.append(target)
        visited.discard(node_id)
        return visited

    def distance(self, source_id: str, target_id: str) -> float:
        """Shortest number of hops from source to target, math.inf when unreachable."""
        if source_id == target_id:
            return 0
        visited = {source_id}
        queue = deque([(source_id, 0)])
        while queue:
            current, depth = queue.popleft()
            for conn in self.outgoing(current):
                target = conn.target_node_id
                if target == target_id:
                    return depth + 1
                if target not in visited:
                    visited.add(target)
                    queue.append((target, depth + 1))
        return math.inf

    def find_trigger(self) -> Node:
        """First trigger/webhook node, else the first node by execution order."""
        for node in self.nodes:
            if node.is_trigger:
                return node
        if not self.nodes:
            raise NoTriggerNodeError()
        return self.nodes[0]

    def in_scope_predecessors(self, node_id: str, scope: Set[str]) -> List[str]:
        return [pid for pid in self.direct_predecessors(node_id) if pid in scope]

    def topological_order(self, scope: Optional[Iterable[str]] = None) -> List[str]:
        """
        Kahn's algorithm restricted to `scope` (all nodes when omitted).
        Ties keep execution order. Raises CyclicGraphError naming the nodes
        whose in-degree never reaches zero.
        """
        scope_set = set(scope) if scope is not None else set(self.node_map)
        ordered_scope = [node.id for node in self.nodes if node.id in scope_set]
        position = {node_id: index for index, node_id in enumerate(ordered_scope)}

        in_degree = {
            node_id: len(self.in_scope_predecessors(node_id, scope_set)) for node_id in ordered_scope
        }
        ready = [node_id for node_id in ordered_scope if in_degree[node_id] == 0]
        order: List[str] = []

        while ready:
            ready.sort(key=position.__getitem__)
            current = ready.pop(0)
            order.append(current)
            for target in self.successors(current):
                if target not in in_degree:
                    continue
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    ready.append(target)

        if len(order) < len(ordered_scope):
            raise CyclicGraphError(node_id for node_id in ordered_scope if node_id not in order)
        return order

    def detect_cycles(self, scope: Optional[Iterable[str]] = None) -> List[str]:
        """Node ids that sit on or behind a cycle; empty for a DAG."""
        try:
            self.topological_order(scope)
        except CyclicGraphError as e:
            return e.node_ids
        return []
