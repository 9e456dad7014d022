"""
Workflow Execution Engine - Concurrent DAG execution with per-node timeouts.

Drives a WorkflowRun through its graph:

- Ready nodes (every upstream node settled) are decided in plan order and
  handed to a bounded thread pool.
- A node runs when it has no inbound edges, or when at least one inbound
  edge is active: its source settled as success or failed, and its
  condition (if any) evaluates true. Otherwise the node is Skipped, which
  in turn deactivates its own outbound edges.
- Each attempt gets its own timeout and its own NodeExecutionResult;
  retries follow the node's RetryConfig.
- Cancellation is cooperative: no new node or retry starts after
  ``cancel()``, in-flight calls are awaited.

Node-level problems are recorded on the node; engine-level problems become
a Failed run. ``execute()`` does not raise for either.
"""

from __future__ import annotations

import logging
import threading
import time
import traceback
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

from connector_sdk.adapter import DEFAULT_ESTIMATED_DURATION_MS
from connector_sdk.context import AdapterContext, AdapterResult, RunMetadata
from connector_sdk.credentials import CredentialProvider
from connector_sdk.errors import AdapterError, AdapterTimeoutError
from connector_sdk.factory import ConnectorAdapterFactory
from connectorflow.config import get_settings
from connectorflow.observability import with_trace_context

from .expressions import ExpressionError, ExpressionEvaluator, TemplateEvaluator
from .graph import WorkflowCycleError, WorkflowGraph
from .models import (
    ExecutionPlan,
    NodeExecutionResult,
    NodeStatus,
    RunMode,
    RunProgress,
    RunStatus,
    ValidationResult,
    Workflow,
    WorkflowNode,
    WorkflowRun,
    utc_now,
)
from .validation import validate_workflow


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[RunProgress], None]

# Fallback estimates by connector family, used when neither the node nor its
# adapter declares one.
DURATION_HEURISTICS_MS = {
    "http": 2000,
    "notif": 1000,
    "slack": 1500,
    "database": 3000,
}


class WorkflowNotFoundError(LookupError):
    """No workflow definition is available for a run."""


class WorkflowProvider(Protocol):
    """Looks up a workflow definition for a run."""

    def get_workflow(self, workflow_id: str, tenant_id: str) -> Optional[Workflow]:
        ...


class InMemoryWorkflowProvider:
    """Dict-backed WorkflowProvider, keyed by (workflow_id, tenant_id)."""

    def __init__(self, *workflows: Workflow) -> None:
        self._workflows: Dict[Tuple[str, str], Workflow] = {}
        for workflow in workflows:
            self.put(workflow)

    def put(self, workflow: Workflow) -> None:
        self._workflows[(workflow.id, workflow.tenant_id)] = workflow

    def get_workflow(self, workflow_id: str, tenant_id: str) -> Optional[Workflow]:
        return self._workflows.get((workflow_id, tenant_id))


def run_with_timeout(func: Callable, timeout_seconds: Optional[float], *args, **kwargs) -> Tuple[Any, bool]:
    """
    Run a function with a timeout.

    On timeout the call keeps its daemon thread until it returns, so it no
    longer counts against the pool and live adapter calls can exceed
    ``max_concurrent_nodes`` while timed-out calls linger.

    Returns: (result, timed_out)
    """
    result_holder = [None]
    exception_holder: List[Optional[BaseException]] = [None]

    def target():
        try:
            result_holder[0] = func(*args, **kwargs)
        except Exception as e:
            exception_holder[0] = e

    thread = threading.Thread(target=target, daemon=True, name=f"adapter-{getattr(func, '__qualname__', 'call')}")
    thread.start()
    thread.join(timeout=timeout_seconds)

    if thread.is_alive():
        # Python threads can't be killed; the call finishes on its own.
        return None, True

    if exception_holder[0] is not None:
        raise exception_holder[0]

    return result_holder[0], False


class _RunState:
    """Per-run accumulator shared between the scheduler and progress reporting."""

    def __init__(self, run: WorkflowRun, graph: WorkflowGraph) -> None:
        self.run = run
        self.graph = graph
        self.final: Dict[str, NodeStatus] = {}
        self.outputs: Dict[str, Dict[str, Any]] = {}
        self.errors: Dict[str, str] = {}
        self.lock = threading.Lock()

    def record(self, results: List[NodeExecutionResult]) -> None:
        with self.lock:
            self.run.node_results.extend(results)
            last = results[-1]
            self.final[last.node_id] = last.status
            if last.is_success:
                self.outputs[last.node_id] = last.output
            elif last.is_error:
                self.errors[last.node_id] = last.error_message or "failed"

    def progress(self) -> Tuple[int, int]:
        with self.lock:
            skipped = sum(1 for status in self.final.values() if status == NodeStatus.SKIPPED)
            settled = len(self.final) - skipped
        return settled, len(self.graph) - skipped


class WorkflowExecutionEngine:
    """
    Executes workflow runs against a connector adapter factory.

    Usage:
        engine = WorkflowExecutionEngine(factory, credentials=store)
        run = engine.submit(workflow, mode=RunMode.TEST, input={"to": "ops"})
        run = engine.execute(run, workflow)
        assert run.status == RunStatus.COMPLETED
    """

    def __init__(
        self,
        factory: ConnectorAdapterFactory,
        credentials: Optional[CredentialProvider] = None,
        workflows: Optional[WorkflowProvider] = None,
        evaluator: Optional[TemplateEvaluator] = None,
        max_concurrent_nodes: Optional[int] = None,
        default_node_timeout_s: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            factory: Adapter table used to run nodes
            credentials: Credential lookup bound into each AdapterContext
            workflows: Used when execute() is given only a run
            evaluator: Condition / template evaluator (ExpressionEvaluator default)
            max_concurrent_nodes: Pool size per run (settings default); timed-out
                calls release their slot while still running
            default_node_timeout_s: Timeout for nodes without timeoutMs (settings default)
            progress_callback: Receives RunProgress events
        """
        settings = get_settings()
        self.factory = factory
        self.credentials = credentials
        self.workflows = workflows
        self.evaluator = evaluator or ExpressionEvaluator()
        self.max_concurrent_nodes = max_concurrent_nodes or settings.max_concurrent_nodes
        self.default_node_timeout_s = default_node_timeout_s or settings.default_node_timeout_s
        self.progress_callback = progress_callback

        self._cancel_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    # ==========================================================================
    # Run lifecycle
    # ==========================================================================

    def submit(
        self,
        workflow: Workflow,
        mode: Union[RunMode, str] = RunMode.MANUAL,
        input: Optional[Dict[str, Any]] = None,
        triggered_by: str = "",
    ) -> WorkflowRun:
        """Create a Pending run for ``workflow``; it can be cancelled before it starts."""
        run = WorkflowRun.create(workflow, mode=mode, input=input, triggered_by=triggered_by)
        self._cancel_event(run.id)
        logger.info(
            f"Submitted run {run.id} for workflow {workflow.id} ({run.mode.value})",
            extra=with_trace_context(run_id=run.id, workflow_id=workflow.id, tenant_id=workflow.tenant_id),
        )
        return run

    def cancel(self, run_id: str) -> bool:
        """
        Request cooperative cancellation.

        Returns False if the run is unknown or already finished.
        """
        with self._lock:
            event = self._cancel_events.get(run_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for run {run_id}", extra=with_trace_context(run_id=run_id))
        return True

    def _cancel_event(self, run_id: str) -> threading.Event:
        with self._lock:
            return self._cancel_events.setdefault(run_id, threading.Event())

    def validate(self, workflow: Workflow) -> ValidationResult:
        return validate_workflow(workflow, self.factory, self.evaluator)

    def get_execution_plan(self, workflow: Workflow) -> ExecutionPlan:
        """
        Raises:
            WorkflowCycleError: If the workflow graph has a cycle
        """
        return WorkflowGraph(workflow).plan(self.estimate_duration)

    def estimate_duration(self, node: WorkflowNode) -> int:
        if node.estimated_duration_ms is not None:
            return node.estimated_duration_ms
        adapter_class = self.factory.get_adapter_class(node.type)
        if adapter_class is not None:
            return adapter_class.estimated_duration_ms
        lowered = node.type.lower()
        for key, estimate in DURATION_HEURISTICS_MS.items():
            if key in lowered:
                return estimate
        return DEFAULT_ESTIMATED_DURATION_MS

    # ==========================================================================
    # Execute
    # ==========================================================================

    def execute(self, run: WorkflowRun, workflow: Optional[Workflow] = None) -> WorkflowRun:
        """
        Execute a Pending run to a terminal status.

        Args:
            run: Run created by ``submit()`` or ``WorkflowRun.create()``
            workflow: Definition to run; looked up through the workflow
                provider when omitted

        Returns:
            The same run, now Completed, Failed or Cancelled

        Raises:
            InvalidRunTransition: If ``run`` is not Pending
        """
        trace = with_trace_context(run_id=run.id, workflow_id=run.workflow_id, tenant_id=run.tenant_id)
        cancel_event = self._cancel_event(run.id)

        if cancel_event.is_set():
            run.transition_to(RunStatus.CANCELLED, "Cancelled before start")
            self._forget(run.id)
            return run

        run.transition_to(RunStatus.RUNNING)
        logger.info(f"Run {run.id} started", extra=trace)

        try:
            workflow = workflow or self._lookup(run)
            validation = validate_workflow(workflow, evaluator=self.evaluator)
            if not validation.is_valid:
                return self._fail(run, f"Workflow validation failed: {'; '.join(validation.errors)}")

            graph = WorkflowGraph(workflow)
            self._emit(run, 0, len(graph), message="started")
            self._run_graph(run, workflow, graph, cancel_event)

        except WorkflowCycleError as e:
            return self._fail(run, str(e))
        except WorkflowNotFoundError as e:
            return self._fail(run, str(e))
        except Exception as e:
            logger.exception(f"Engine error in run {run.id}", extra=trace)
            return self._fail(run, f"Engine error: {e}")
        finally:
            self._forget(run.id)

        return run

    def _lookup(self, run: WorkflowRun) -> Workflow:
        if self.workflows is None:
            raise WorkflowNotFoundError(f"No workflow given for run {run.id} and no workflow provider configured")
        workflow = self.workflows.get_workflow(run.workflow_id, run.tenant_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow '{run.workflow_id}' not found for tenant '{run.tenant_id}'")
        return workflow

    def _fail(self, run: WorkflowRun, message: str) -> WorkflowRun:
        if run.is_terminal:
            logger.error(f"Run {run.id} already {run.status.value}: {message}")
            return run
        logger.error(f"Run {run.id} failed: {message}", extra=with_trace_context(run_id=run.id))
        run.transition_to(RunStatus.FAILED, message)
        self._emit(run, 0, 0, message=message)
        return run

    def _forget(self, run_id: str) -> None:
        with self._lock:
            self._cancel_events.pop(run_id, None)

    def _run_graph(
        self,
        run: WorkflowRun,
        workflow: Workflow,
        graph: WorkflowGraph,
        cancel_event: threading.Event,
    ) -> None:
        """Schedule nodes until everything reachable has settled."""
        state = _RunState(run, graph)
        pending = list(graph.execution_order)

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent_nodes,
            thread_name_prefix=f"run-{run.id[:8]}",
        ) as pool:
            in_flight: Dict[Future, str] = {}

            while True:
                if not cancel_event.is_set():
                    self._dispatch(state, workflow, pending, pool, in_flight, cancel_event)

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    node_id = in_flight.pop(future)
                    state.record(future.result())
                    settled, total = state.progress()
                    node = graph.get_node(node_id)
                    self._emit(run, settled, total, node_id, node.type, f"node {node_id} {state.final[node_id].value}")

        run.output = dict(state.outputs)

        if cancel_event.is_set():
            logger.info(f"Run {run.id} cancelled with {len(pending)} nodes not started")
            run.transition_to(RunStatus.CANCELLED, "Cancelled")
        elif state.errors:
            first = next(node_id for node_id in graph.execution_order if node_id in state.errors)
            run.transition_to(RunStatus.FAILED, f"Node '{first}' failed: {state.errors[first]}")
        else:
            run.transition_to(RunStatus.COMPLETED)

        settled, total = state.progress()
        self._emit(run, settled, total, message=run.status.value)
        logger.info(
            f"Run {run.id} {run.status.value} in {run.duration_ms}ms "
            f"({len(state.outputs)} succeeded, {len(state.errors)} failed)",
            extra=with_trace_context(run_id=run.id, workflow_id=run.workflow_id),
        )

    def _dispatch(
        self,
        state: _RunState,
        workflow: Workflow,
        pending: List[str],
        pool: ThreadPoolExecutor,
        in_flight: Dict[Future, str],
        cancel_event: threading.Event,
    ) -> None:
        """Skip or submit every pending node whose upstream has settled."""
        progressed = True
        while progressed:
            progressed = False
            for node_id in list(pending):
                decision = self._decide(state, workflow, node_id)
                if decision is None:
                    continue

                pending.remove(node_id)
                run_it, reason = decision
                node = state.graph.get_node(node_id)
                if not run_it:
                    state.record([self._skipped(state.run, node, reason)])
                    logger.debug(f"Skipped {node_id}: {reason}")
                    progressed = True
                    continue

                inputs = self._inputs(state, node_id)
                variables = self._variables(state, workflow)
                future = pool.submit(self._attempts, node, state.run, inputs, variables, cancel_event)
                in_flight[future] = node_id

    def _decide(self, state: _RunState, workflow: Workflow, node_id: str) -> Optional[Tuple[bool, str]]:
        """(run?, reason) once all upstream nodes settled, else None."""
        inbound = state.graph.inbound(node_id)
        with state.lock:
            final = dict(state.final)
        if any(edge.from_node not in final for edge in inbound):
            return None

        node = state.graph.get_node(node_id)
        if not node.is_enabled:
            return False, "Node is disabled"
        if not inbound:
            return True, ""

        variables = self._variables(state, workflow)
        helpers = self._helpers(final)
        reasons = []
        for edge in inbound:
            if final[edge.from_node] == NodeStatus.SKIPPED:
                reasons.append(f"upstream '{edge.from_node}' was skipped")
                continue
            if edge.condition is None:
                return True, ""
            try:
                if self.evaluator.evaluate_condition(edge.condition, variables, helpers):
                    return True, ""
                reasons.append(f"condition '{edge.condition}' on {edge} is false")
            except ExpressionError as e:
                logger.warning(f"Condition on {edge} could not be evaluated: {e.reason}")
                reasons.append(f"condition '{edge.condition}' on {edge} could not be evaluated: {e.reason}")
        return False, "; ".join(reasons)

    @staticmethod
    def _helpers(final: Dict[str, NodeStatus]) -> Dict[str, Callable[..., Any]]:
        return {
            "succeeded": lambda node_id: final.get(node_id) == NodeStatus.SUCCESS,
            "failed": lambda node_id: final.get(node_id) == NodeStatus.FAILED,
            "skipped": lambda node_id: final.get(node_id) == NodeStatus.SKIPPED,
        }

    def _inputs(self, state: _RunState, node_id: str) -> Dict[str, Any]:
        inputs = dict(state.run.input)
        with state.lock:
            for upstream in state.graph.upstream(node_id):
                if upstream in state.outputs:
                    inputs[upstream] = state.outputs[upstream]
        return inputs

    def _variables(self, state: _RunState, workflow: Workflow) -> Dict[str, Any]:
        """Expression context: run input, successful node outputs, workflow variables."""
        run = state.run
        with state.lock:
            outputs = {node_id: dict(output) for node_id, output in state.outputs.items()}
        variables: Dict[str, Any] = dict(outputs)
        variables.update(
            input=run.input,
            nodes={node_id: {"output": output} for node_id, output in outputs.items()},
            vars=workflow.global_variables,
            run={
                "id": run.id,
                "workflowId": run.workflow_id,
                "tenantId": run.tenant_id,
                "mode": run.mode.value,
                "triggeredBy": run.triggered_by,
            },
        )
        return variables

    def _skipped(self, run: WorkflowRun, node: WorkflowNode, reason: str) -> NodeExecutionResult:
        now = utc_now()
        return NodeExecutionResult(
            run_id=run.id,
            node_id=node.id,
            node_type=node.type,
            status=NodeStatus.SKIPPED,
            start_time=now,
            end_time=now,
            metadata={"reason": reason},
        )

    def _emit(
        self,
        run: WorkflowRun,
        settled: int,
        total: int,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
        message: str = "",
    ) -> None:
        if self.progress_callback is None:
            return
        percent = 100.0 if run.is_terminal else (100.0 * settled / total if total else 0.0)
        progress = RunProgress(
            run_id=run.id,
            workflow_id=run.workflow_id,
            status=run.status,
            completed_nodes=settled,
            total_nodes=total,
            percent=round(percent, 1),
            current_node_id=node_id,
            current_node_type=node_type,
            message=message,
        )
        try:
            self.progress_callback(progress)
        except Exception:
            logger.exception(f"Progress callback failed for run {run.id}")

    # ==========================================================================
    # Node execution
    # ==========================================================================

    def _attempts(
        self,
        node: WorkflowNode,
        run: WorkflowRun,
        inputs: Dict[str, Any],
        variables: Dict[str, Any],
        cancel_event: threading.Event,
    ) -> List[NodeExecutionResult]:
        """Run a node with its retry policy; one result per attempt."""
        policy = node.retry
        max_attempts = policy.max_attempts if policy is not None else 1
        attempts: List[NodeExecutionResult] = []

        for attempt in range(1, max_attempts + 1):
            result = self.execute_node(node, run, inputs, variables, cancel_event, attempt)
            attempts.append(result)
            if result.is_success or attempt == max_attempts:
                break

            delay = policy.delay_after(attempt)
            logger.info(
                f"Retrying {node.id} in {delay:.2f}s (attempt {attempt + 1}/{max_attempts})",
                extra=with_trace_context(run_id=run.id, node_id=node.id),
            )
            if cancel_event.wait(delay):
                break

        return attempts

    def execute_node(
        self,
        node: WorkflowNode,
        run: WorkflowRun,
        inputs: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
        attempt: int = 1,
    ) -> NodeExecutionResult:
        """
        Execute one attempt of a node.

        Never raises: unknown types, invalid templates, adapter exceptions and
        timeouts are all returned as Failed results.
        """
        inputs = dict(inputs or {})
        variables = variables if variables is not None else {"input": run.input, "nodes": {}, **inputs}
        trace = with_trace_context(run_id=run.id, workflow_id=run.workflow_id, node_id=node.id, tenant_id=run.tenant_id)
        timeout_s = node.timeout_ms / 1000.0 if node.timeout_ms else self.default_node_timeout_s

        start_time = utc_now()
        started = time.perf_counter()
        timed_out = False
        output: Dict[str, Any] = {}
        error: Optional[str] = None
        metadata: Dict[str, Any] = {"timeoutS": timeout_s}

        adapter = self.factory.create(node.type)
        if adapter is None:
            error = f"No adapter registered for connector type '{node.type}'"
        else:
            metadata["adapterVersion"] = adapter.version
            try:
                config = node.config.with_values(self.evaluator.render(node.config.values, variables))
                context = AdapterContext(
                    node_id=node.id,
                    node_type=node.type,
                    config=config,
                    inputs=inputs,
                    run=RunMetadata(
                        run_id=run.id,
                        workflow_id=run.workflow_id,
                        tenant_id=run.tenant_id,
                        mode=run.mode.value,
                        triggered_by=run.triggered_by,
                    ),
                    credential_id=node.credential_id,
                    credentials=self.credentials,
                    timeout_s=timeout_s,
                    cancel_event=cancel_event,
                    attempt=attempt,
                )
                logger.debug(f"Executing node {node.id} ({node.type}) attempt {attempt}", extra=trace)
                result, timed_out = run_with_timeout(adapter.execute, timeout_s, context)

                if timed_out:
                    error = f"Node timed out after {timeout_s:g}s"
                elif not isinstance(result, AdapterResult):
                    error = f"Adapter returned {type(result).__name__}, expected AdapterResult"
                else:
                    output = dict(result.output)
                    metadata.update(result.metadata)
                    if not result.success:
                        error = result.error_message or "Adapter reported failure"

            except AdapterTimeoutError as e:
                timed_out = True
                error = e.message
            except (AdapterError, ExpressionError) as e:
                error = str(e)
                if getattr(e, "status_code", None) is not None:
                    metadata["statusCode"] = e.status_code
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                metadata["traceback"] = traceback.format_exc()
                logger.exception(f"Adapter {node.type} raised", extra=trace)

        duration_ms = int((time.perf_counter() - started) * 1000)
        status = NodeStatus.FAILED if error else NodeStatus.SUCCESS
        if error:
            logger.warning(f"Node {node.id} failed (attempt {attempt}): {error}", extra=trace)
        else:
            logger.debug(f"Node {node.id} succeeded in {duration_ms}ms", extra=trace)

        return NodeExecutionResult(
            run_id=run.id,
            node_id=node.id,
            node_type=node.type,
            status=status,
            input=inputs,
            output=output,
            error_message=error,
            start_time=start_time,
            end_time=utc_now(),
            duration_ms=duration_ms,
            attempt=attempt,
            timed_out=timed_out,
            metadata=metadata,
        )


__all__ = [
    "WorkflowExecutionEngine",
    "WorkflowProvider",
    "WorkflowNotFoundError",
    "InMemoryWorkflowProvider",
    "ProgressCallback",
    "run_with_timeout",
]
