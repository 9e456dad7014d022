"""
Workflow Graph - Adjacency view of a workflow and execution planning.

Nodes are keyed by id. Ordering is Kahn's algorithm with the ready queue
kept in workflow node order, so plans are stable for a given definition.
Edges that reference unknown nodes are ignored here; validation reports them.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .models import ExecutionPlan, ExecutionStep, Workflow, WorkflowEdge, WorkflowNode


logger = logging.getLogger(__name__)

DurationEstimator = Callable[[WorkflowNode], int]


class WorkflowCycleError(ValueError):
    """The workflow graph contains a cycle."""

    def __init__(self, nodes: List[str], cycle: Optional[List[str]] = None) -> None:
        self.nodes = nodes
        self.cycle = cycle or []
        if self.cycle:
            detail = " -> ".join(self.cycle)
        else:
            detail = ", ".join(nodes)
        super().__init__(f"Workflow has a cycle: {detail}")


class WorkflowGraph:
    """
    Directed graph over a workflow's nodes.

    Contains:
    - Inbound / outbound edges per node id
    - Topological levels (level 0 = no upstream)
    - Helpers for reachability

    Raises WorkflowCycleError on construction if the graph is cyclic.
    """

    def __init__(self, workflow: Workflow):
        self.workflow = workflow
        self.workflow_id = workflow.id

        self._nodes: Dict[str, WorkflowNode] = {}
        for node in workflow.nodes:
            self._nodes.setdefault(node.id, node)
        self._position = {node_id: index for index, node_id in enumerate(self._nodes)}

        self._inbound: Dict[str, List[WorkflowEdge]] = {node_id: [] for node_id in self._nodes}
        self._outbound: Dict[str, List[WorkflowEdge]] = {node_id: [] for node_id in self._nodes}
        for edge in workflow.edges:
            if edge.from_node in self._nodes and edge.to_node in self._nodes:
                self._outbound[edge.from_node].append(edge)
                self._inbound[edge.to_node].append(edge)

        self._order: List[str] = []
        self._levels: Dict[str, int] = {}
        self._compute_levels()

    def _compute_levels(self) -> None:
        """Kahn's algorithm; a node's level is one more than its deepest upstream."""
        in_degree = {node_id: len(edges) for node_id, edges in self._inbound.items()}
        levels = {node_id: 0 for node_id in self._nodes}
        queue = [node_id for node_id in self._nodes if in_degree[node_id] == 0]
        order: List[str] = []

        while queue:
            queue.sort(key=self._position.__getitem__)
            node_id = queue.pop(0)
            order.append(node_id)
            for edge in self._outbound[node_id]:
                target = edge.to_node
                levels[target] = max(levels[target], levels[node_id] + 1)
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    queue.append(target)

        if len(order) != len(self._nodes):
            remaining = [node_id for node_id in self._nodes if node_id not in set(order)]
            raise WorkflowCycleError(remaining, self._find_cycle(remaining))

        # Stable within a level: workflow order.
        self._order = sorted(order, key=lambda n: (levels[n], self._position[n]))
        self._levels = levels

    def _find_cycle(self, candidates: List[str]) -> List[str]:
        visiting: List[str] = []
        done = set()

        def visit(node_id: str) -> Optional[List[str]]:
            if node_id in visiting:
                return visiting[visiting.index(node_id):] + [node_id]
            if node_id in done:
                return None
            visiting.append(node_id)
            for edge in self._outbound[node_id]:
                found = visit(edge.to_node)
                if found:
                    return found
            visiting.pop()
            done.add(node_id)
            return None

        for node_id in candidates:
            found = visit(node_id)
            if found:
                return found
        return []

    # ==== Accessors ====

    @property
    def execution_order(self) -> List[str]:
        return list(self._order)

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return self._nodes.get(node_id)

    def level_of(self, node_id: str) -> int:
        return self._levels[node_id]

    def inbound(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._inbound.get(node_id, ()))

    def outbound(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._outbound.get(node_id, ()))

    def upstream(self, node_id: str) -> List[str]:
        return [edge.from_node for edge in self._inbound.get(node_id, ())]

    def downstream(self, node_id: str) -> List[str]:
        return [edge.to_node for edge in self._outbound.get(node_id, ())]

    def get_root_nodes(self) -> List[str]:
        return [node_id for node_id in self._order if not self._inbound[node_id]]

    def levels(self) -> List[List[str]]:
        grouped: Dict[int, List[str]] = {}
        for node_id in self._order:
            grouped.setdefault(self._levels[node_id], []).append(node_id)
        return [grouped[level] for level in sorted(grouped)]

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    # ==== Planning ====

    def plan(self, estimate: Optional[DurationEstimator] = None) -> ExecutionPlan:
        """
        Build an execution plan.

        The estimate is the critical path: the longest chain of per-node
        estimates through the graph.
        """
        estimate = estimate or (lambda node: node.estimated_duration_ms or 0)
        durations = {node_id: int(estimate(self._nodes[node_id])) for node_id in self._order}
        groups = self.levels()
        level_sizes = {self._levels[group[0]]: len(group) for group in groups}

        finish: Dict[str, int] = {}
        via: Dict[str, Optional[str]] = {}
        for node_id in self._order:
            upstream = self.upstream(node_id)
            start = 0
            via[node_id] = None
            for up in upstream:
                if finish[up] > start:
                    start, via[node_id] = finish[up], up
            finish[node_id] = start + durations[node_id]

        critical_path: List[str] = []
        if finish:
            tail: Optional[str] = max(self._order, key=lambda n: (finish[n], -self._position[n]))
            while tail is not None:
                critical_path.append(tail)
                tail = via[tail]
            critical_path.reverse()

        steps = []
        for order, node_id in enumerate(self._order):
            node = self._nodes[node_id]
            level = self._levels[node_id]
            steps.append(
                ExecutionStep(
                    node_id=node_id,
                    node_type=node.type,
                    label=node.display_name,
                    level=level,
                    order=order,
                    dependencies=sorted(set(self.upstream(node_id)), key=self._position.__getitem__),
                    can_run_in_parallel=level_sizes[level] > 1,
                    estimated_duration_ms=durations[node_id],
                )
            )

        return ExecutionPlan(
            workflow_id=self.workflow_id,
            steps=steps,
            dependencies={step.node_id: step.dependencies for step in steps},
            parallel_groups=groups,
            estimated_duration_ms=max(finish.values(), default=0),
            metadata={
                "totalNodes": len(steps),
                "levels": len(groups),
                "maxParallelism": max((len(g) for g in groups), default=0),
                "serialDurationMs": sum(durations.values()),
                "criticalPath": critical_path,
                "workflowVersion": self.workflow.version,
            },
        )


__all__ = [
    "WorkflowGraph",
    "WorkflowCycleError",
    "DurationEstimator",
]
