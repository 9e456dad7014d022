"""
Tests for the workflow execution engine.

Tests:
- Dependency ordering and concurrency
- Conditional edges and skip propagation
- Failure containment, timeouts and retries
- Cancellation
- Workflow lookup, credentials and progress events
"""
import threading

import pytest

from connector_sdk import AdapterResult, ConnectorAdapter
from workflow_runtime import (
    InMemoryWorkflowProvider,
    InvalidRunTransition,
    NodeStatus,
    RunMode,
    RunStatus,
    WorkflowExecutionEngine,
    WorkflowRun,
)
from workflow_runtime.executor import run_with_timeout


TRIGGER = {"id": "t", "type": "test.trigger", "category": "trigger"}


def echo(node_id, **config):
    return {"id": node_id, "type": "test.echo", "config": config}


def statuses(run):
    return {node_id: result.status for node_id, result in run.final_results().items()}


def run_workflow(engine, workflow, mode=RunMode.TEST, input=None):
    run = engine.submit(workflow, mode=mode, input=input or {}, triggered_by="tests")
    return engine.execute(run, workflow)


class TestOrdering:
    """Test dependency order and parallel levels."""

    def test_linear_workflow(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, echo("b")], [("t", "b")])

        run = run_workflow(engine, workflow, input={"name": "Ada"})

        assert run.status == RunStatus.COMPLETED
        assert run.error_message is None
        assert statuses(run) == {"t": NodeStatus.SUCCESS, "b": NodeStatus.SUCCESS}

        t, b = run.final_results()["t"], run.final_results()["b"]
        assert t.end_time <= b.start_time
        assert t.output == {"name": "Ada"}
        assert b.output["inputs"] == ["name", "t"]
        assert b.input["t"] == {"name": "Ada"}
        assert set(run.output) == {"t", "b"}
        assert run.start_time is not None and run.end_time is not None
        assert run.duration_ms >= 0

    def test_independent_nodes_run_concurrently(self, engine, make_workflow):
        workflow = make_workflow(
            [TRIGGER, echo("x", sleep=0.3), echo("y", sleep=0.3), echo("z", sleep=0.3)],
            [("t", "x"), ("t", "y"), ("t", "z")],
        )

        run = run_workflow(engine, workflow)

        results = [run.final_results()[n] for n in ("x", "y", "z")]
        assert max(r.start_time for r in results) < min(r.end_time for r in results)

    def test_concurrency_limit(self, factory, make_workflow):
        engine = WorkflowExecutionEngine(factory, max_concurrent_nodes=1, default_node_timeout_s=5)
        workflow = make_workflow(
            [TRIGGER, echo("x", sleep=0.05), echo("y", sleep=0.05)],
            [("t", "x"), ("t", "y")],
        )

        run = run_workflow(engine, workflow)

        ordered = sorted(run.final_results().values(), key=lambda r: r.start_time)
        for earlier, later in zip(ordered, ordered[1:]):
            assert earlier.end_time <= later.start_time

    def test_join_waits_for_all_upstream(self, engine, make_workflow):
        workflow = make_workflow(
            [TRIGGER, echo("slow", sleep=0.2), echo("fast"), echo("join")],
            [("t", "slow"), ("t", "fast"), ("slow", "join"), ("fast", "join")],
        )

        run = run_workflow(engine, workflow)

        final = run.final_results()
        assert final["join"].start_time >= final["slow"].end_time
        assert final["join"].output["inputs"] == ["fast", "slow"]

    def test_templates_rendered_from_context(self, engine, make_workflow):
        workflow = make_workflow(
            [TRIGGER, echo("b", greeting="hi {{ input.name }}", count="{{ nodes.t.output.count }}")],
            [("t", "b")],
        )

        run = run_workflow(engine, workflow, input={"name": "Ada", "count": 3})

        output = run.final_results()["b"].output
        assert output["greeting"] == "hi Ada"
        assert output["count"] == 3


class KeywordEvaluator:
    """Conditions name a truthy input key; string config values are upper-cased."""

    def render(self, value, variables):
        return {k: v.upper() if isinstance(v, str) else v for k, v in value.items()}

    def evaluate_condition(self, condition, variables, functions=None):
        return bool(variables["input"].get(condition))

    def check_syntax(self, expression):
        return None if expression.isidentifier() else "not an input key"


class TestConditions:
    """Test conditional edges and skip propagation."""

    def test_false_condition_skips_node(self, engine, make_workflow):
        workflow = make_workflow(
            [TRIGGER, echo("a"), echo("after_a")],
            [("t", "a", "input.go == true"), ("a", "after_a")],
        )

        run = run_workflow(engine, workflow, input={"go": False})

        assert run.status == RunStatus.COMPLETED
        assert statuses(run)["a"] == NodeStatus.SKIPPED
        assert statuses(run)["after_a"] == NodeStatus.SKIPPED
        assert "is false" in run.final_results()["a"].metadata["reason"]
        assert "upstream 'a' was skipped" in run.final_results()["after_a"].metadata["reason"]
        assert set(run.output) == {"t"}

    def test_true_condition_on_upstream_output(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, echo("a")], [("t", "a", "nodes.t.output.flag && succeeded('t')")])

        run = run_workflow(engine, workflow, input={"flag": True})

        assert statuses(run)["a"] == NodeStatus.SUCCESS

    def test_any_active_inbound_edge_runs_node(self, engine, make_workflow):
        workflow = make_workflow(
            [TRIGGER, echo("a"), echo("b"), echo("join")],
            [("t", "a"), ("t", "b"), ("a", "join", "false"), ("b", "join")],
        )

        run = run_workflow(engine, workflow)

        assert statuses(run)["join"] == NodeStatus.SUCCESS

    def test_custom_evaluator(self, factory, make_workflow):
        engine = WorkflowExecutionEngine(factory, evaluator=KeywordEvaluator(), default_node_timeout_s=5)
        workflow = make_workflow(
            [TRIGGER, echo("a", greeting="hi"), echo("b")],
            [("t", "a", "go"), ("t", "b", "stop")],
        )

        run = run_workflow(engine, workflow, input={"go": 1})

        assert statuses(run)["a"] == NodeStatus.SUCCESS
        assert statuses(run)["b"] == NodeStatus.SKIPPED
        assert run.final_results()["a"].output["greeting"] == "HI"

    def test_custom_evaluator_checks_syntax(self, factory, make_workflow):
        engine = WorkflowExecutionEngine(factory, evaluator=KeywordEvaluator())
        workflow = make_workflow([TRIGGER, echo("a")], [("t", "a", "input.go")])

        result = engine.validate(workflow)

        assert not result.is_valid
        assert any("not an input key" in error for error in result.errors)

    def test_disabled_node_skipped(self, engine, make_workflow):
        disabled = {**echo("a"), "isEnabled": False}
        workflow = make_workflow([TRIGGER, disabled], [("t", "a")])

        run = run_workflow(engine, workflow)

        assert run.status == RunStatus.COMPLETED
        assert run.final_results()["a"].metadata["reason"] == "Node is disabled"


class TestFailures:
    """Test that node failures stay on the node."""

    def test_failure_is_contained(self, engine, make_workflow):
        workflow = make_workflow(
            [
                TRIGGER,
                {"id": "bad", "type": "test.fail", "config": {"message": "upstream API down"}},
                echo("good"),
                echo("after_bad"),
                echo("only_on_success"),
            ],
            [
                ("t", "bad"),
                ("t", "good"),
                ("bad", "after_bad"),
                ("bad", "only_on_success", "succeeded('bad')"),
            ],
        )

        run = run_workflow(engine, workflow)

        assert run.status == RunStatus.FAILED
        assert run.error_message == "Node 'bad' failed: upstream API down"
        assert statuses(run) == {
            "t": NodeStatus.SUCCESS,
            "bad": NodeStatus.FAILED,
            "good": NodeStatus.SUCCESS,
            "after_bad": NodeStatus.SUCCESS,
            "only_on_success": NodeStatus.SKIPPED,
        }
        assert "bad" not in run.output
        assert "bad" not in run.final_results()["after_bad"].output["inputs"]

    def test_adapter_exception_recorded(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, {"id": "c", "type": "test.crash"}], [("t", "c")])

        run = run_workflow(engine, workflow)

        result = run.final_results()["c"]
        assert result.status == NodeStatus.FAILED
        assert result.error_message == "RuntimeError: unexpected"
        assert "Traceback" in result.metadata["traceback"]

    def test_unknown_connector_type(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, {"id": "x", "type": "svc.unknown"}], [("t", "x")])

        run = run_workflow(engine, workflow)

        assert run.status == RunStatus.FAILED
        assert run.final_results()["x"].error_message == "No adapter registered for connector type 'svc.unknown'"

    def test_timeout(self, engine, make_workflow):
        slow = {**echo("slow", sleep=1.0), "timeoutMs": 50}
        workflow = make_workflow([TRIGGER, slow], [("t", "slow")])

        run = run_workflow(engine, workflow)

        result = run.final_results()["slow"]
        assert result.status == NodeStatus.FAILED
        assert result.timed_out
        assert result.error_message == "Node timed out after 0.05s"
        assert result.duration_ms < 1000
        assert run.status == RunStatus.FAILED

    def test_cycle_fails_run(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, echo("a"), echo("b")], [("t", "a"), ("a", "b"), ("b", "a")])

        run = run_workflow(engine, workflow)

        assert run.status == RunStatus.FAILED
        assert "Workflow has a cycle" in run.error_message
        assert run.node_results == []

    def test_empty_workflow_fails_validation(self, engine, make_workflow):
        run = run_workflow(engine, make_workflow([]))

        assert run.status == RunStatus.FAILED
        assert run.error_message.startswith("Workflow validation failed")


class TestRetries:

    def test_retry_until_success(self, engine, make_workflow):
        flaky = {
            "id": "f",
            "type": "test.flaky",
            "config": {"failures": 2},
            "retry": {"maxAttempts": 3, "initialDelayMs": 1},
        }
        workflow = make_workflow([TRIGGER, flaky], [("t", "f")])

        run = run_workflow(engine, workflow)

        attempts = run.results_for("f")
        assert [r.attempt for r in attempts] == [1, 2, 3]
        assert [r.status for r in attempts] == [NodeStatus.FAILED, NodeStatus.FAILED, NodeStatus.SUCCESS]
        assert attempts[-1].output == {"calls": 3}
        assert run.status == RunStatus.COMPLETED

    def test_retries_exhausted(self, engine, make_workflow):
        flaky = {
            "id": "f",
            "type": "test.flaky",
            "config": {"failures": 5},
            "retry": {"maxAttempts": 2, "initialDelayMs": 1},
        }
        workflow = make_workflow([TRIGGER, flaky], [("t", "f")])

        run = run_workflow(engine, workflow)

        assert len(run.results_for("f")) == 2
        assert run.status == RunStatus.FAILED
        assert run.error_message == "Node 'f' failed: attempt 2 failed"

    def test_no_retry_policy_means_single_attempt(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, {"id": "f", "type": "test.flaky"}], [("t", "f")])

        run = run_workflow(engine, workflow)

        assert len(run.results_for("f")) == 1


class GatedAdapter(ConnectorAdapter):
    """Blocks until the test releases it."""
    type = "test.gated"
    started = threading.Event()
    release = threading.Event()

    def execute(self, context):
        self.started.set()
        self.release.wait(5)
        return AdapterResult.ok({"released": self.release.is_set()})


class TestCancellation:

    def test_cancel_before_start(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER])
        run = engine.submit(workflow)

        assert engine.cancel(run.id)
        run = engine.execute(run, workflow)

        assert run.status == RunStatus.CANCELLED
        assert run.error_message == "Cancelled before start"
        assert run.node_results == []
        assert run.start_time is None and run.end_time is not None
        assert not engine.cancel(run.id)

    def test_cancel_stops_new_nodes(self, factory, make_workflow):
        holder = {}

        def on_progress(progress):
            if progress.current_node_id == "t":
                holder["engine"].cancel(progress.run_id)

        engine = WorkflowExecutionEngine(factory, default_node_timeout_s=5, progress_callback=on_progress)
        holder["engine"] = engine
        workflow = make_workflow([TRIGGER, echo("a"), echo("b")], [("t", "a"), ("a", "b")])

        run = run_workflow(engine, workflow)

        assert run.status == RunStatus.CANCELLED
        assert run.error_message == "Cancelled"
        assert statuses(run) == {"t": NodeStatus.SUCCESS}

    def test_cancel_while_node_running(self, engine, factory, make_workflow):
        GatedAdapter.started = threading.Event()
        GatedAdapter.release = threading.Event()
        factory.register(GatedAdapter)
        workflow = make_workflow(
            [TRIGGER, {"id": "g", "type": "test.gated"}, echo("after")],
            [("t", "g"), ("g", "after")],
        )
        run = engine.submit(workflow)
        worker = threading.Thread(target=engine.execute, args=(run, workflow))
        worker.start()

        assert GatedAdapter.started.wait(5)
        assert run.status == RunStatus.RUNNING
        assert engine.cancel(run.id)
        GatedAdapter.release.set()
        worker.join(5)

        assert not worker.is_alive()
        assert run.status == RunStatus.CANCELLED
        assert run.error_message == "Cancelled"
        assert statuses(run) == {"t": NodeStatus.SUCCESS, "g": NodeStatus.SUCCESS}
        assert run.final_results()["g"].output == {"released": True}
        assert "after" not in run.output

    def test_cancel_unknown_run(self, engine):
        assert not engine.cancel("no-such-run")

    @pytest.mark.parametrize("start, target, allowed", [
        (RunStatus.PENDING, RunStatus.CANCELLED, True),
        (RunStatus.RUNNING, RunStatus.CANCELLED, True),
        (RunStatus.PENDING, RunStatus.COMPLETED, False),
        (RunStatus.PENDING, RunStatus.FAILED, False),
        (RunStatus.CANCELLED, RunStatus.RUNNING, False),
        (RunStatus.COMPLETED, RunStatus.CANCELLED, False),
    ])
    def test_run_transitions(self, start, target, allowed):
        run = WorkflowRun(workflow_id="wf", status=start)

        if allowed:
            assert run.transition_to(target).status == target
        else:
            with pytest.raises(InvalidRunTransition):
                run.transition_to(target)

    def test_execute_twice_rejected(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER])
        run = run_workflow(engine, workflow)

        with pytest.raises(InvalidRunTransition):
            engine.execute(run, workflow)


class TestWorkflowLookup:

    def test_provider_used_when_workflow_omitted(self, factory, make_workflow):
        workflow = make_workflow([TRIGGER])
        engine = WorkflowExecutionEngine(factory, workflows=InMemoryWorkflowProvider(workflow))

        run = engine.execute(WorkflowRun.create(workflow))

        assert run.status == RunStatus.COMPLETED

    def test_workflow_for_other_tenant_not_found(self, factory, make_workflow):
        workflow = make_workflow([TRIGGER])
        engine = WorkflowExecutionEngine(factory, workflows=InMemoryWorkflowProvider(workflow))
        run = WorkflowRun(workflow_id=workflow.id, tenant_id="other")

        run = engine.execute(run)

        assert run.status == RunStatus.FAILED
        assert run.error_message == "Workflow 'wf-1' not found for tenant 'other'"

    def test_no_provider(self, engine, make_workflow):
        run = engine.execute(WorkflowRun.create(make_workflow([TRIGGER])))

        assert run.status == RunStatus.FAILED
        assert "no workflow provider configured" in run.error_message


class TestCredentialsAndProgress:

    def test_credentials_scoped_to_tenant(self, engine, make_workflow):
        node = {"id": "s", "type": "test.secret", "credentialId": "cred-1"}

        run = run_workflow(engine, make_workflow([TRIGGER, node], [("t", "s")]))
        assert run.final_results()["s"].output == {"user": "ops"}

        other = run_workflow(engine, make_workflow([TRIGGER, node], [("t", "s")], tenant_id="globex"))
        assert other.status == RunStatus.FAILED
        assert "Credential 'cred-1' not found for tenant 'globex'" in other.error_message

    def test_progress_events(self, factory, make_workflow):
        events = []
        engine = WorkflowExecutionEngine(factory, progress_callback=events.append)
        workflow = make_workflow([TRIGGER, echo("a")], [("t", "a")])

        run_workflow(engine, workflow)

        assert events[0].message == "started"
        assert events[0].total_nodes == 2
        assert [e.current_node_id for e in events if e.current_node_id] == ["t", "a"]
        assert events[-1].status == RunStatus.COMPLETED
        assert events[-1].percent == 100.0
        assert events[-1].completed_nodes == 2

    def test_failing_progress_callback_ignored(self, factory, make_workflow):
        def explode(progress):
            raise RuntimeError("listener down")

        engine = WorkflowExecutionEngine(factory, progress_callback=explode)

        run = run_workflow(engine, make_workflow([TRIGGER]))

        assert run.status == RunStatus.COMPLETED


class TestPlanningAndHelpers:

    def test_plan_uses_adapter_estimates(self, engine, make_workflow):
        workflow = make_workflow([TRIGGER, echo("a"), {"id": "h", "type": "svc.httpFetch"}], [("t", "a"), ("a", "h")])

        plan = engine.get_execution_plan(workflow)

        assert [step.estimated_duration_ms for step in plan.steps] == [10, 100, 2000]
        assert plan.estimated_duration_ms == 2110

    def test_validate_checks_types(self, engine, make_workflow):
        result = engine.validate(make_workflow([TRIGGER, {"id": "x", "type": "svc.unknown"}], [("t", "x")]))
        assert not result.is_valid

    def test_run_with_timeout(self):
        assert run_with_timeout(lambda x: x * 2, 1.0, 21) == (42, False)

    def test_run_with_timeout_reraises(self):
        def boom():
            raise KeyError("k")

        with pytest.raises(KeyError):
            run_with_timeout(boom, 1.0)

    def test_timed_out_call_keeps_running(self):
        started, release = threading.Event(), threading.Event()

        def slow():
            started.set()
            release.wait(5)

        assert run_with_timeout(slow, 0.05) == (None, True)
        assert started.is_set()
        assert any(t.name.startswith("adapter-") and t.is_alive() for t in threading.enumerate())
        release.set()
