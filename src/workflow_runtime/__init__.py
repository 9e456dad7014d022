"""
Workflow Runtime - Validation, planning and concurrent execution of workflow DAGs.

This package provides:
- Workflow / WorkflowNode / WorkflowEdge: Graph definition
- WorkflowRun / NodeExecutionResult: Execution records
- WorkflowGraph: Topological levels and execution plans
- validate_workflow: Exhaustive structural validation
- ExpressionEvaluator: Safe edge conditions and {{ }} config templates
- WorkflowExecutionEngine: Bounded thread-pool execution engine

Adapters run synchronously on worker threads.
"""

from .models import (
    NodeCategory,
    TriggerType,
    RunStatus,
    RunMode,
    NodeStatus,
    InvalidRunTransition,
    RetryConfig,
    Workflow,
    WorkflowNode,
    WorkflowEdge,
    WorkflowTrigger,
    WorkflowRun,
    NodeExecutionResult,
    ValidationResult,
    ExecutionPlan,
    ExecutionStep,
    RunProgress,
    parse_workflow,
    load_workflow,
)
from .graph import WorkflowGraph, WorkflowCycleError
from .validation import validate_workflow
from .expressions import ExpressionEvaluator, ExpressionError, TemplateEvaluator, evaluate_condition
from .executor import (
    WorkflowExecutionEngine,
    WorkflowProvider,
    WorkflowNotFoundError,
    InMemoryWorkflowProvider,
)

__all__ = [
    # Models
    "NodeCategory",
    "TriggerType",
    "RunStatus",
    "RunMode",
    "NodeStatus",
    "InvalidRunTransition",
    "RetryConfig",
    "Workflow",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowTrigger",
    "WorkflowRun",
    "NodeExecutionResult",
    "ValidationResult",
    "ExecutionPlan",
    "ExecutionStep",
    "RunProgress",
    "parse_workflow",
    "load_workflow",
    # Graph
    "WorkflowGraph",
    "WorkflowCycleError",
    "validate_workflow",
    # Expressions
    "ExpressionEvaluator",
    "ExpressionError",
    "TemplateEvaluator",
    "evaluate_condition",
    # Executor
    "WorkflowExecutionEngine",
    "WorkflowProvider",
    "WorkflowNotFoundError",
    "InMemoryWorkflowProvider",
]
