"""
Workflow validation.

Collects every problem in one pass so callers can show the complete list.
Errors make a workflow unrunnable; warnings are advisory.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional, TYPE_CHECKING

from .expressions import ExpressionEvaluator, TemplateEvaluator
from .graph import WorkflowCycleError, WorkflowGraph
from .models import ValidationResult, Workflow

if TYPE_CHECKING:
    from connector_sdk.factory import ConnectorAdapterFactory


logger = logging.getLogger(__name__)

NO_NODES_ERROR = "Workflow must have at least one node"
NO_TRIGGER_ERROR = "Workflow must have at least one trigger node"


def validate_workflow(
    workflow: Workflow,
    factory: Optional["ConnectorAdapterFactory"] = None,
    evaluator: Optional[TemplateEvaluator] = None,
) -> ValidationResult:
    """
    Validate workflow structure.

    Args:
        workflow: Workflow to check
        factory: When given, node types must be registered in it
        evaluator: Used to syntax-check edge conditions

    Returns:
        ValidationResult with all errors and warnings found
    """
    evaluator = evaluator or ExpressionEvaluator()
    result = ValidationResult()

    if not workflow.nodes:
        result.errors.append(NO_NODES_ERROR)
    elif not workflow.trigger_nodes():
        result.errors.append(NO_TRIGGER_ERROR)

    counts = Counter(node.id for node in workflow.nodes)
    for node_id, count in counts.items():
        if count > 1:
            result.errors.append(f"Duplicate node id '{node_id}' ({count} nodes)")

    known = set(counts)
    connected = set()
    for index, edge in enumerate(workflow.edges):
        for end, node_id in (("source", edge.from_node), ("target", edge.to_node)):
            if node_id not in known:
                result.errors.append(f"Edge {index} ({edge}) references unknown {end} node '{node_id}'")
        connected.update((edge.from_node, edge.to_node))

        if edge.condition:
            problem = evaluator.check_syntax(edge.condition)
            if problem:
                result.errors.append(f"Edge {index} ({edge}) has an invalid condition: {problem}")

    if workflow.nodes:
        try:
            WorkflowGraph(workflow)
        except WorkflowCycleError as e:
            result.errors.append(str(e))

    for node in workflow.nodes:
        if not node.is_trigger and node.id not in connected:
            result.warnings.append(f"Node '{node.id}' is not connected to any other node")
        if factory is not None and not factory.is_available(node.type):
            result.errors.append(f"Node '{node.id}' uses unknown connector type '{node.type}'")
        if node.is_trigger and not node.is_enabled:
            result.warnings.append(f"Trigger node '{node.id}' is disabled")

    if workflow.nodes and not workflow.triggers:
        result.warnings.append("Workflow declares no triggers; it can only be started manually")

    result.is_valid = not result.errors
    if result.errors:
        logger.debug(f"Workflow {workflow.id} failed validation: {result.errors}")
    return result


__all__ = [
    "validate_workflow",
    "NO_NODES_ERROR",
    "NO_TRIGGER_ERROR",
]
