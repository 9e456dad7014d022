"""
End-to-end test: resolve connector versions, configure adapters from the
resolution and run a notification workflow against a mocked service.
"""
from unittest.mock import patch

import pytest

from connector_registry import ConnectorRegistry, DependencyResolver, generate_lockfile
from connector_sdk import ConnectorAdapterFactory, InMemoryCredentialStore
from connectorpacks.core import REGISTRY_ENTRIES, SendNotificationV1Adapter, register_all
from workflow_runtime import NodeStatus, RunMode, RunStatus, WorkflowExecutionEngine, parse_workflow


REQUEST = "connector_sdk.http.requests.request"

REQUESTED = ["core.manualTrigger@^1.0.0", "svc.sendNotification@^1.0.0"]

WORKFLOW = {
    "id": "deploy-notify",
    "tenantId": "acme",
    "name": "Notify on deploy",
    "nodes": [
        {"id": "start", "type": "core.manualTrigger", "category": "trigger"},
        {
            "id": "notify",
            "type": "svc.sendNotification",
            "credentialId": "notify-token",
            "config": {
                "channel": "email",
                "recipient": "{{ input.owner }}",
                "subject": "Deploy {{ input.version }}",
                "message": "Version {{ input.version }} is live",
                "template": "deploy-done",
            },
            "retry": {"maxAttempts": 2, "initialDelayMs": 1},
        },
    ],
    "edges": [{"from": "start", "to": "notify", "condition": "input.notify"}],
    "triggers": [{"type": "manual"}],
}


@pytest.fixture
def catalog():
    factory = ConnectorAdapterFactory()
    register_all(factory)
    return factory


@pytest.fixture
def store():
    credentials = InMemoryCredentialStore()
    credentials.put("notify-token", {"token": "s3cret"}, tenant_id="acme")
    return credentials


def run_notification(factory, store, input):
    engine = WorkflowExecutionEngine(factory, credentials=store, default_node_timeout_s=5)
    workflow = parse_workflow(WORKFLOW)
    run = engine.submit(workflow, mode=RunMode.TEST, input=input)
    return engine.execute(run, workflow)


class TestNotificationWorkflow:

    def test_latest_release(self, catalog, store, http_response):
        """Without pins the newest compatible adapter sends the full payload."""
        result = DependencyResolver(ConnectorRegistry(REGISTRY_ENTRIES)).resolve(REQUESTED)
        assert result.resolved_versions["svc.sendNotification"] == "1.2.3"
        factory = ConnectorAdapterFactory.from_resolution(result, catalog)

        with patch(REQUEST, return_value=http_response(202, {"notificationId": "ntf-9"})) as mocked:
            run = run_notification(factory, store, {"notify": True, "owner": "ops@acme.test", "version": "4.2"})

        assert run.status == RunStatus.COMPLETED
        assert run.output["notify"]["notificationId"] == "ntf-9"

        payload = mocked.call_args.kwargs["json"]
        assert payload["recipient"] == "ops@acme.test"
        assert payload["subject"] == "Deploy 4.2"
        assert payload["template"] == "deploy-done"
        assert payload["correlationId"] == f"{run.id}:notify"
        assert mocked.call_args.kwargs["headers"]["Authorization"] == "Bearer s3cret"

    def test_lockfile_pins_legacy_release(self, catalog, store, http_response):
        """A lockfile pin selects the 1.0.0 adapter, which predates templates."""
        resolver = DependencyResolver(ConnectorRegistry(REGISTRY_ENTRIES))
        result = resolver.resolve(REQUESTED, lockfile={"svc.sendNotification": "1.0.0"})
        lockfile = generate_lockfile(result)
        factory = ConnectorAdapterFactory.from_resolution(result, catalog)

        assert lockfile.resolved_versions["svc.sendNotification"] == "1.0.0"
        assert factory.get_adapter_class("svc.sendNotification") is SendNotificationV1Adapter

        with patch(REQUEST, return_value=http_response(202, {})) as mocked:
            run = run_notification(factory, store, {"notify": True, "owner": "ops@acme.test", "version": "4.2"})

        assert run.status == RunStatus.COMPLETED
        assert "template" not in mocked.call_args.kwargs["json"]
        assert run.final_results()["notify"].metadata["adapterVersion"] == "1.0.0"

    def test_condition_skips_notification(self, catalog, store):
        with patch(REQUEST) as mocked:
            run = run_notification(catalog, store, {"notify": False})

        assert run.status == RunStatus.COMPLETED
        assert run.final_results()["notify"].status == NodeStatus.SKIPPED
        mocked.assert_not_called()

    def test_service_outage_is_retried_then_fails(self, catalog, store, http_response):
        with patch(REQUEST, return_value=http_response(503, {"error": "down"}, reason="Service Unavailable")) as mocked:
            run = run_notification(catalog, store, {"notify": True, "owner": "ops@acme.test", "version": "4.2"})

        assert mocked.call_count == 2
        assert run.status == RunStatus.FAILED
        assert run.error_message == "Node 'notify' failed: HTTP 503: Service Unavailable"
        attempts = run.results_for("notify")
        assert [a.metadata.get("statusCode") for a in attempts] == [503, 503]
