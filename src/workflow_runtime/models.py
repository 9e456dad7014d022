"""
Workflow Models - Graph definition, runs and per-node execution records.

Workflows are immutable values: structural edits produce a new Workflow
with an incremented ``version``. A WorkflowRun is the only mutable record and
its status only moves through ``transition_to()``.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from connector_sdk.context import ConnectorConfig


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# Enums
# ==============================================================================

class NodeCategory(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    TRANSFORM = "transform"


class TriggerType(str, Enum):
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    EVENT = "event"
    MANUAL = "manual"


class RunStatus(str, Enum):
    """Status of a workflow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunMode(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    TRIGGERED = "triggered"
    TEST = "test"


class NodeStatus(str, Enum):
    """Status of a single node attempt."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})

# Pending -> Cancelled is a cancel() that lands before execute() starts the run
_ALLOWED_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.CANCELLED},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED},
}


class InvalidRunTransition(Exception):
    """A run status change not allowed by the run state machine."""

    def __init__(self, current: RunStatus, target: RunStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition run from '{current.value}' to '{target.value}'")


# ==============================================================================
# Workflow definition
# ==============================================================================

class RetryConfig(BaseModel):
    """
    Retry policy for a node.

    ``max_attempts`` counts the first attempt; the delay before attempt
    ``n + 1`` is ``initial_delay_ms * multiplier ** (n - 1)`` capped at
    ``max_delay_ms``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_attempts: int = Field(3, ge=1, alias="maxAttempts")
    initial_delay_ms: int = Field(1000, ge=0, alias="initialDelayMs")
    multiplier: float = Field(2.0, ge=1.0)
    max_delay_ms: int = Field(30000, ge=0, alias="maxDelayMs")

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        delay_ms = self.initial_delay_ms * (self.multiplier ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000.0


class WorkflowNode(BaseModel):
    """
    A node in a workflow.

    ``type`` is a connector id; ``config`` is an opaque payload owned by that
    connector.
    """
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1, description="Node id (unique within workflow)")
    type: str = Field(..., min_length=1, description="Connector type, e.g. 'core.httpRequest'")
    category: NodeCategory = NodeCategory.ACTION
    label: str = ""
    config: ConnectorConfig = Field(default_factory=ConnectorConfig)
    credential_id: Optional[str] = Field(None, alias="credentialId")
    is_enabled: bool = Field(True, alias="isEnabled")

    timeout_ms: Optional[int] = Field(None, gt=0, alias="timeoutMs")
    retry: Optional[RetryConfig] = None
    estimated_duration_ms: Optional[int] = Field(None, ge=0, alias="estimatedDurationMs")

    @model_validator(mode="before")
    @classmethod
    def tag_config(cls, data: Any) -> Any:
        if isinstance(data, dict):
            connector_type = data.get("type") if isinstance(data.get("type"), str) else ""
            data = {**data, "config": ConnectorConfig.from_payload(data.get("config"), connector_type)}
        return data

    @property
    def is_trigger(self) -> bool:
        return self.category == NodeCategory.TRIGGER

    @property
    def display_name(self) -> str:
        return self.label or self.id


class WorkflowEdge(BaseModel):
    """Directed arc between two nodes, optionally guarded by a condition."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_node: str = Field(..., alias="from")
    to_node: str = Field(..., alias="to")
    condition: Optional[str] = None
    label: str = ""

    @field_validator("condition")
    @classmethod
    def blank_condition(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def __str__(self) -> str:
        return f"{self.from_node} -> {self.to_node}"


class WorkflowTrigger(BaseModel):
    """Declared way a workflow gets started."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: TriggerType = TriggerType.MANUAL
    config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = Field(True, alias="isActive")


class Workflow(BaseModel):
    """
    Complete workflow definition.

    A directed graph: ``nodes`` are vertices (kept in author order), ``edges``
    are arcs.
    """
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str = Field("", alias="tenantId")
    name: str = "Unnamed Workflow"
    description: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    triggers: List[WorkflowTrigger] = Field(default_factory=list)
    version: int = Field(1, ge=1)
    is_active: bool = Field(False, alias="isActive")
    global_variables: Dict[str, Any] = Field(default_factory=dict, alias="globalVariables")
    tags: List[str] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def trigger_nodes(self) -> List[WorkflowNode]:
        return [node for node in self.nodes if node.is_trigger]

    def with_structure(
        self,
        nodes: Optional[List[WorkflowNode]] = None,
        edges: Optional[List[WorkflowEdge]] = None,
        triggers: Optional[List[WorkflowTrigger]] = None,
    ) -> "Workflow":
        """Copy with new structure and ``version`` incremented."""
        update: Dict[str, Any] = {"version": self.version + 1}
        if nodes is not None:
            update["nodes"] = list(nodes)
        if edges is not None:
            update["edges"] = list(edges)
        if triggers is not None:
            update["triggers"] = list(triggers)
        return self.model_copy(update=update)


def parse_workflow(data: Dict[str, Any]) -> Workflow:
    """Parse a workflow document into a Workflow."""
    return Workflow.model_validate(data)


def load_workflow(path: Union[str, Path]) -> Workflow:
    """Load a workflow from a JSON or YAML file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return parse_workflow(yaml.safe_load(text) or {})
    return parse_workflow(json.loads(text))


# ==============================================================================
# Execution records
# ==============================================================================

class NodeExecutionResult(BaseModel):
    """
    Record of one node attempt.

    Immutable: a retry produces a new record with ``attempt`` incremented.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    node_id: str = Field(..., alias="nodeId")
    node_type: str = Field(..., alias="nodeType")
    status: NodeStatus
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = Field(None, alias="errorMessage")
    start_time: Optional[datetime] = Field(None, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    duration_ms: int = Field(0, alias="durationMs")
    attempt: int = 1
    timed_out: bool = Field(False, alias="timedOut")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == NodeStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == NodeStatus.FAILED

    @property
    def is_skipped(self) -> bool:
        return self.status == NodeStatus.SKIPPED


class WorkflowRun(BaseModel):
    """
    One execution instance of a workflow.

    ``status`` must only be changed through ``transition_to()``.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str = Field(..., alias="workflowId")
    tenant_id: str = Field("", alias="tenantId")
    workflow_version: Optional[int] = Field(None, alias="workflowVersion")
    status: RunStatus = RunStatus.PENDING
    mode: RunMode = RunMode.MANUAL
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = Field(None, alias="errorMessage")
    start_time: Optional[datetime] = Field(None, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    duration_ms: Optional[int] = Field(None, alias="durationMs")
    triggered_by: str = Field("", alias="triggeredBy")
    node_results: List[NodeExecutionResult] = Field(default_factory=list, alias="nodeResults")

    @classmethod
    def create(
        cls,
        workflow: Workflow,
        mode: Union[RunMode, str] = RunMode.MANUAL,
        input: Optional[Dict[str, Any]] = None,
        triggered_by: str = "",
    ) -> "WorkflowRun":
        """New Pending run for ``workflow``."""
        return cls(
            workflow_id=workflow.id,
            tenant_id=workflow.tenant_id,
            workflow_version=workflow.version,
            mode=RunMode(mode),
            input=dict(input or {}),
            triggered_by=triggered_by,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def transition_to(self, status: RunStatus, error_message: Optional[str] = None) -> "WorkflowRun":
        """
        Move to ``status``, stamping start/end times.

        Raises:
            InvalidRunTransition: If the state machine does not allow it
        """
        if status not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidRunTransition(self.status, status)

        now = utc_now()
        if status == RunStatus.RUNNING:
            self.start_time = now
        if status in TERMINAL_RUN_STATUSES:
            self.end_time = now
            if self.start_time is not None:
                self.duration_ms = int((now - self.start_time).total_seconds() * 1000)
        if error_message is not None:
            self.error_message = error_message
        self.status = status
        return self

    def results_for(self, node_id: str) -> List[NodeExecutionResult]:
        return [r for r in self.node_results if r.node_id == node_id]

    def final_results(self) -> Dict[str, NodeExecutionResult]:
        """Last attempt per node, in recording order."""
        final: Dict[str, NodeExecutionResult] = {}
        for result in self.node_results:
            final[result.node_id] = result
        return final


class ValidationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(True, alias="isValid")
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ExecutionStep(BaseModel):
    """One node in an execution plan."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    node_id: str = Field(..., alias="nodeId")
    node_type: str = Field(..., alias="nodeType")
    label: str = ""
    level: int = 0
    order: int = 0
    dependencies: List[str] = Field(default_factory=list)
    can_run_in_parallel: bool = Field(False, alias="canRunInParallel")
    estimated_duration_ms: int = Field(0, alias="estimatedDurationMs")


class ExecutionPlan(BaseModel):
    """Topologically ordered steps grouped into schedulable levels."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    workflow_id: str = Field(..., alias="workflowId")
    steps: List[ExecutionStep] = Field(default_factory=list)
    dependencies: Dict[str, List[str]] = Field(default_factory=dict)
    parallel_groups: List[List[str]] = Field(default_factory=list, alias="parallelGroups")
    estimated_duration_ms: int = Field(0, alias="estimatedDurationMs")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def order(self) -> List[str]:
        return [step.node_id for step in self.steps]


class RunProgress(BaseModel):
    """Progress event emitted while a run executes."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    workflow_id: str = Field(..., alias="workflowId")
    status: RunStatus
    completed_nodes: int = Field(0, alias="completedNodes")
    total_nodes: int = Field(0, alias="totalNodes")
    percent: float = 0.0
    current_node_id: Optional[str] = Field(None, alias="currentNodeId")
    current_node_type: Optional[str] = Field(None, alias="currentNodeType")
    message: str = ""


__all__ = [
    "NodeCategory",
    "TriggerType",
    "RunStatus",
    "RunMode",
    "NodeStatus",
    "TERMINAL_RUN_STATUSES",
    "InvalidRunTransition",
    "RetryConfig",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowTrigger",
    "Workflow",
    "parse_workflow",
    "load_workflow",
    "NodeExecutionResult",
    "WorkflowRun",
    "ValidationResult",
    "ExecutionStep",
    "ExecutionPlan",
    "RunProgress",
]
