"""Pytest configuration and fixtures."""
import json
import os
import threading
import time

import pytest
import requests

# Set test environment variables
os.environ["CONNECTORFLOW_ENV"] = "test"
os.environ["CONNECTORFLOW_LOG_JSON"] = "false"
os.environ["CONNECTORFLOW_NOTIFICATION_BASE_URL"] = "http://notify.test"

from connector_registry import ConnectorRegistry, ConnectorRegistryEntry  # noqa: E402
from connector_sdk import (  # noqa: E402
    AdapterError,
    AdapterResult,
    ConnectorAdapter,
    ConnectorAdapterFactory,
    InMemoryCredentialStore,
)
from connectorflow.config import reset_settings  # noqa: E402
from workflow_runtime import WorkflowExecutionEngine, parse_workflow  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are rebuilt from the environment for every test."""
    reset_settings()
    yield
    reset_settings()


# ==============================================================================
# Registry fixtures
# ==============================================================================

def make_entry(connector_id, version, peer=(), incompatible=(), prefer=None, strategy=None):
    conflict_rules = {"incompatibleWith": list(incompatible), "preferVersion": prefer or {}}
    if strategy is not None:
        conflict_rules["resolutionStrategy"] = strategy
    return ConnectorRegistryEntry.model_validate({
        "id": connector_id,
        "version": version,
        "dependencies": {"peer": list(peer)},
        "conflictRules": conflict_rules,
    })


@pytest.fixture
def entry():
    """Factory for registry entries."""
    return make_entry


@pytest.fixture
def notification_registry():
    """Registry with several releases of svc.sendNotification."""
    return ConnectorRegistry([
        make_entry("svc.sendNotification", "1.0.0"),
        make_entry("svc.sendNotification", "1.1.0"),
        make_entry("svc.sendNotification", "1.2.3"),
        make_entry("svc.sendNotification", "2.0.0-beta.1"),
        make_entry("core.httpRequest", "1.0.0"),
    ])


# ==============================================================================
# Adapter fixtures
# ==============================================================================

class EchoAdapter(ConnectorAdapter):
    """Returns its config values and the names of its inputs."""
    type = "test.echo"
    category = "action"
    estimated_duration_ms = 100

    def execute(self, context):
        time.sleep(context.get_config("sleep", 0))
        return AdapterResult.ok({**context.config.values, "inputs": sorted(context.inputs)})


class TriggerAdapter(ConnectorAdapter):
    type = "test.trigger"
    category = "trigger"
    estimated_duration_ms = 10

    def execute(self, context):
        return AdapterResult.ok(dict(context.inputs))


class FailAdapter(ConnectorAdapter):
    type = "test.fail"

    def execute(self, context):
        raise AdapterError(context.get_config("message", "boom"), self.type)


class CrashAdapter(ConnectorAdapter):
    type = "test.crash"

    def execute(self, context):
        raise RuntimeError("unexpected")


class FlakyAdapter(ConnectorAdapter):
    """Fails until it has been called ``failures`` times for a node."""
    type = "test.flaky"
    calls = {}
    lock = threading.Lock()

    def execute(self, context):
        with self.lock:
            count = self.calls.get(context.node_id, 0) + 1
            self.calls[context.node_id] = count
        if count <= context.get_config("failures", 1):
            return AdapterResult.fail(f"attempt {count} failed")
        return AdapterResult.ok({"calls": count})


class SecretAdapter(ConnectorAdapter):
    type = "test.secret"

    def execute(self, context):
        secret = context.get_credential()
        return AdapterResult.ok({"user": secret["user"]})


@pytest.fixture
def factory():
    """Factory with the test adapters registered."""
    FlakyAdapter.calls = {}
    factory = ConnectorAdapterFactory()
    for adapter_class in (EchoAdapter, TriggerAdapter, FailAdapter, CrashAdapter, FlakyAdapter, SecretAdapter):
        factory.register(adapter_class)
    return factory


@pytest.fixture
def credentials():
    store = InMemoryCredentialStore()
    store.put("cred-1", {"user": "ops", "token": "t0k"}, tenant_id="acme")
    return store


@pytest.fixture
def engine(factory, credentials):
    return WorkflowExecutionEngine(
        factory,
        credentials=credentials,
        max_concurrent_nodes=4,
        default_node_timeout_s=5,
    )


def make_response(status_code=200, body=None, url="http://notify.test", reason=None):
    """Real requests.Response carrying a JSON body."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason or ("OK" if status_code < 400 else "Error")
    response.url = url
    response.encoding = "utf-8"
    if body is None:
        response._content = b""
    else:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    return response


@pytest.fixture
def http_response():
    return make_response


@pytest.fixture
def make_workflow():
    """Build a workflow from compact node/edge lists."""

    def build(nodes, edges=(), **extra):
        data = {
            "id": extra.pop("id", "wf-1"),
            "tenantId": extra.pop("tenant_id", "acme"),
            "name": "Test workflow",
            "nodes": list(nodes),
            "edges": [
                {"from": e[0], "to": e[1], **({"condition": e[2]} if len(e) > 2 else {})}
                for e in edges
            ],
            "triggers": extra.pop("triggers", [{"type": "manual"}]),
        }
        data.update(extra)
        return parse_workflow(data)

    return build
