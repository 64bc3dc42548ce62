"""
Graph ordering for workflow runs.

Builds a networkx multigraph keyed by node id (one edge per connection, so
several connections between the same pair of nodes on different ports are
kept apart) and answers the ordering questions a run needs: execution
order, predecessor sets, hop distances, per-port successors and the scope
covered by TryCatch nodes.
"""

import math
from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx
import structlog

from ..nodes.base import NodeKind, TryCatchScope
from ..workflows.models import Connection, NodeDefinition, WorkflowDefinition
from .errors import CircularDependencyError

logger = structlog.get_logger()


class WorkflowGraph:
    """Read-only view of a definition's nodes and connections."""

    def __init__(self, workflow: WorkflowDefinition):
        self.workflow = workflow
        self.nodes: Dict[str, NodeDefinition] = {node.id: node for node in workflow.nodes}
        self.graph = nx.MultiDiGraph()
        self._inbound: Dict[str, List[Connection]] = {node_id: [] for node_id in self.nodes}
        self._outbound: Dict[str, List[Connection]] = {node_id: [] for node_id in self.nodes}

        for node in workflow.nodes:
            self.graph.add_node(node.id, type=node.type.value, label=node.label)

        for index, connection in enumerate(workflow.connections):
            self.graph.add_edge(
                connection.source_node_id,
                connection.target_node_id,
                key=index,
                source_handle=connection.source_handle,
                target_handle=connection.target_handle,
            )
            self._inbound[connection.target_node_id].append(connection)
            self._outbound[connection.source_node_id].append(connection)

        self.logger = logger.bind(component="workflow_graph", workflow_id=workflow.id)

    def _sort_key(self, node_id: str) -> Tuple[int, str, str]:
        node = self.nodes[node_id]
        return (node.execution_order, node.label.lower(), node_id)

    def check_acyclic(self) -> None:
        """Raise CircularDependencyError if any cycle exists."""
        if nx.is_directed_acyclic_graph(self.graph):
            return
        cycle = [edge[0] for edge in nx.find_cycle(self.graph)]
        labels = [self.nodes[node_id].label for node_id in cycle]
        raise CircularDependencyError(
            f"Circular dependency detected in workflow: {' -> '.join(labels + labels[:1])}",
            cycle_path=list(cycle),
        )

    def inbound(self, node_id: str) -> List[Connection]:
        """Connections into ``node_id``, in definition order."""
        return list(self._inbound.get(node_id, []))

    def outbound(self, node_id: str, handle: Optional[str] = None) -> List[Connection]:
        connections = self._outbound.get(node_id, [])
        if handle is None:
            return list(connections)
        return [connection for connection in connections if connection.source_handle == handle]

    def successors(self, node_id: str, handle: Optional[str] = None) -> List[str]:
        """Direct successors, optionally only those wired to one output port."""
        seen = []
        for connection in self.outbound(node_id, handle):
            if connection.target_node_id not in seen:
                seen.append(connection.target_node_id)
        return seen

    def trigger_nodes(self) -> List[str]:
        """Trigger-kind nodes, or the graph roots when there are none."""
        triggers = [node_id for node_id, node in self.nodes.items() if node.type.is_trigger]
        if not triggers:
            triggers = [node_id for node_id in self.nodes if self.graph.in_degree(node_id) == 0]
        return sorted(triggers, key=self._sort_key)

    def reachable_from(self, start_ids: Iterable[str]) -> Set[str]:
        """Nodes reachable from ``start_ids`` (inclusive), breadth first."""
        start = [node_id for node_id in start_ids if node_id in self.nodes]
        visited = set(start)
        queue = deque(start)
        while queue:
            current = queue.popleft()
            for successor in self.graph.successors(current):
                if successor not in visited:
                    visited.add(successor)
                    queue.append(successor)
        return visited

    def predecessors(self, node_id: str) -> Set[str]:
        """Full transitive predecessor set of ``node_id`` (exclusive)."""
        visited: Set[str] = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for predecessor in self.graph.predecessors(current):
                if predecessor not in visited:
                    visited.add(predecessor)
                    queue.append(predecessor)
        visited.discard(node_id)
        return visited

    def predecessors_by_distance(self, node_id: str) -> List[str]:
        """Transitive predecessors, nearest first."""
        ordered: List[str] = []
        visited = {node_id}
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for predecessor in sorted(self.graph.predecessors(current), key=self._sort_key):
                if predecessor not in visited:
                    visited.add(predecessor)
                    ordered.append(predecessor)
                    queue.append(predecessor)
        return ordered

    def distance(self, source_id: str, target_id: str) -> float:
        """Shortest hop count from ``source_id`` to ``target_id``; infinite when unreachable."""
        if source_id == target_id:
            return 0
        visited = {source_id}
        queue = deque([(source_id, 0)])
        while queue:
            current, hops = queue.popleft()
            for successor in self.graph.successors(current):
                if successor == target_id:
                    return hops + 1
                if successor not in visited:
                    visited.add(successor)
                    queue.append((successor, hops + 1))
        return math.inf

    def execution_order(self, node_ids: Optional[Set[str]] = None) -> List[str]:
        """Topological order over ``node_ids``; ties break on executionOrder then label."""
        subgraph = self.graph if node_ids is None else self.graph.subgraph(node_ids)
        # Parallel connections between two nodes count once for ordering
        subgraph = nx.DiGraph(subgraph)
        try:
            return list(nx.lexicographical_topological_sort(subgraph, key=self._sort_key))
        except nx.NetworkXUnfeasible:
            self.check_acyclic()
            raise

    def try_catch_scope(self, node_id: str, scope: TryCatchScope) -> Set[str]:
        """Nodes whose failures the TryCatch at ``node_id`` handles.

        ``predecessors`` covers only the direct predecessors. ``branch``
        covers every upstream node back to, but excluding, the nearest
        TryCatch on each path.
        """
        direct = set(self.graph.predecessors(node_id))
        if scope == TryCatchScope.PREDECESSORS:
            return direct

        covered: Set[str] = set()
        queue = deque(direct)
        while queue:
            current = queue.popleft()
            if current in covered or self.nodes[current].type == NodeKind.TRY_CATCH:
                continue
            covered.add(current)
            queue.extend(self.graph.predecessors(current))
        return covered
