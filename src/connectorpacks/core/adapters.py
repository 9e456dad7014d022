"""
Core Adapters - Essential connector implementations.

These adapters provide basic workflow functionality: triggers, data shaping,
branching and outbound HTTP. All are synchronous and bound by the node
timeout through HttpClient.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from connector_sdk import (
    AdapterContext,
    AdapterError,
    AdapterResult,
    ConnectorAdapter,
    HttpClient,
    auth_headers,
)
from connector_sdk.http import JSON_METHODS
from connectorflow.config import get_settings


logger = logging.getLogger(__name__)


# ==============================================================================
# Triggers / pass-through
# ==============================================================================

class ManualTriggerAdapter(ConnectorAdapter):
    """
    Manual Trigger - Start a workflow manually.

    Emits the run input unchanged so downstream nodes can reference it.
    """

    type = "core.manualTrigger"
    version = "1.0.0"
    category = "trigger"
    display_name = "Manual Trigger"
    description = "Starts the workflow when triggered manually"
    estimated_duration_ms = 10

    def execute(self, context: AdapterContext) -> AdapterResult:
        output = dict(context.inputs)
        output["triggeredAt"] = datetime.now(timezone.utc).isoformat()
        return AdapterResult.ok(output)


class NoOpAdapter(ConnectorAdapter):
    """No Operation - passes its inputs through unchanged."""

    type = "core.noOp"
    version = "1.0.0"
    category = "transform"
    display_name = "No Operation"
    description = "No operation - passes inputs through"
    estimated_duration_ms = 10

    def execute(self, context: AdapterContext) -> AdapterResult:
        return AdapterResult.ok(dict(context.inputs))


# ==============================================================================
# Set Data
# ==============================================================================

class Assignment(BaseModel):
    name: str = Field(..., min_length=1, description="Output field, dotted for nesting")
    value: Any = None


class SetDataConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assignments: List[Assignment] = Field(default_factory=list)
    include: Literal["all", "none"] = Field(
        "none",
        description="'all' starts from the node inputs, 'none' emits only the assignments",
    )


def _assign(target: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


class SetDataAdapter(ConnectorAdapter):
    """
    Set Data - Set or modify fields.

    Values arrive already rendered, so ``{{ fetch.body.id }}`` in an
    assignment resolves to the upstream value before this adapter runs.
    """

    type = "core.setData"
    version = "1.0.0"
    category = "transform"
    display_name = "Set Data"
    description = "Set or modify data fields"
    config_model = SetDataConfig
    estimated_duration_ms = 10

    def execute(self, context: AdapterContext) -> AdapterResult:
        config: SetDataConfig = self.parse_config(context)

        output: Dict[str, Any] = dict(context.inputs) if config.include == "all" else {}
        for assignment in config.assignments:
            _assign(output, assignment.name, assignment.value)

        return AdapterResult.ok(output, assigned=len(config.assignments))


# ==============================================================================
# If Condition
# ==============================================================================

IfOperation = Literal[
    "equal",
    "notEqual",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "regex",
    "larger",
    "smaller",
    "largerEqual",
    "smallerEqual",
    "isEmpty",
    "isNotEmpty",
]


class IfConditionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    left_value: Any = Field(None, alias="leftValue")
    right_value: Any = Field(None, alias="rightValue")
    operation: IfOperation = "equal"
    case_sensitive: bool = Field(True, alias="caseSensitive")


def _coerce(value: Any) -> Any:
    """Numbers and booleans written as strings compare as their typed values."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    try:
        return float(text)
    except ValueError:
        return value


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict, tuple)) and len(value) == 0)


class IfConditionAdapter(ConnectorAdapter):
    """
    If Condition - Compare two values and report the outcome.

    Output carries ``condition`` plus the inputs under ``true`` or ``false``,
    so downstream edges can branch with ``check.condition`` or
    ``not check.condition``.
    """

    type = "core.ifCondition"
    version = "1.0.0"
    category = "transform"
    display_name = "If"
    description = "Branch on a comparison"
    config_model = IfConditionConfig
    estimated_duration_ms = 10

    def execute(self, context: AdapterContext) -> AdapterResult:
        config: IfConditionConfig = self.parse_config(context)
        result = self.compare(config)

        inputs = dict(context.inputs)
        output = {
            "condition": result,
            "true": inputs if result else {},
            "false": {} if result else inputs,
        }
        return AdapterResult.ok(output, conditionResult=result)

    def compare(self, config: IfConditionConfig) -> bool:
        op = config.operation
        left = _coerce(config.left_value)
        right = _coerce(config.right_value)

        if op == "isEmpty":
            return _is_empty(config.left_value)
        if op == "isNotEmpty":
            return not _is_empty(config.left_value)

        if op in ("larger", "smaller", "largerEqual", "smallerEqual"):
            try:
                a, b = float(left), float(right)
            except (TypeError, ValueError) as e:
                raise AdapterError(
                    f"Operation '{op}' needs numeric values, got {config.left_value!r} and {config.right_value!r}",
                    self.type,
                ) from e
            return {
                "larger": a > b,
                "smaller": a < b,
                "largerEqual": a >= b,
                "smallerEqual": a <= b,
            }[op]

        if op == "regex":
            try:
                return re.search(str(config.right_value or ""), str(config.left_value or "")) is not None
            except re.error as e:
                raise AdapterError(f"Invalid regex {config.right_value!r}: {e}", self.type) from e

        if isinstance(left, str) and isinstance(right, str) and not config.case_sensitive:
            left, right = left.lower(), right.lower()

        if op == "equal":
            return left == right
        if op == "notEqual":
            return left != right

        if op in ("contains", "notContains"):
            if isinstance(left, str) and isinstance(right, str):
                found = right in left
            elif isinstance(left, (list, tuple)):
                found = right in left or config.right_value in left
            elif isinstance(left, dict):
                found = config.right_value in left
            else:
                found = False
            return found if op == "contains" else not found

        if not (isinstance(left, str) and isinstance(right, str)):
            left, right = str(config.left_value), str(config.right_value)
            if not config.case_sensitive:
                left, right = left.lower(), right.lower()
        if op == "startsWith":
            return left.startswith(right)
        return left.endswith(right)


# ==============================================================================
# HTTP Request
# ==============================================================================

class HttpRequestConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    timeout_s: Optional[float] = Field(None, alias="timeoutS", gt=0)
    fail_on_error: bool = Field(True, alias="failOnError")


class HttpRequestAdapter(ConnectorAdapter):
    """
    HTTP Request - Make HTTP requests.

    A credential, when the node has one, may carry ``token`` (sent as a
    bearer token) or ``apiKey`` (sent in ``apiKeyHeader``, default
    ``X-API-Key``).
    """

    type = "core.httpRequest"
    version = "1.0.0"
    category = "action"
    display_name = "HTTP Request"
    description = "Make HTTP requests"
    config_model = HttpRequestConfig
    estimated_duration_ms = 2000

    def execute(self, context: AdapterContext) -> AdapterResult:
        config: HttpRequestConfig = self.parse_config(context)
        secret = context.get_credential(required=False) or {}

        client = HttpClient(
            headers={**config.headers, **auth_headers(secret)},
            timeout=config.timeout_s or get_settings().http_timeout_s,
            context=context,
        )
        response = client.request(
            config.method,
            config.url,
            params=config.query or None,
            json=config.body if config.method in JSON_METHODS else None,
        )

        output = {
            "statusCode": response.status_code,
            "headers": response.headers,
            "body": response.body(),
        }
        if config.fail_on_error and not response.ok:
            return self.fail(
                f"HTTP {response.status_code} from {config.method} {config.url}",
                output=output,
                statusCode=response.status_code,
            )
        return AdapterResult.ok(output, statusCode=response.status_code)


# ==============================================================================
# Send Notification
# ==============================================================================

NOTIFICATIONS_ENDPOINT = "/api/v1/notifications"


class SendNotificationConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel: str = "email"
    recipient: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    subject: Optional[str] = None
    priority: Literal["low", "normal", "high", "critical"] = "normal"
    template: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    base_url: Optional[str] = Field(None, alias="baseUrl")


class SendNotificationAdapter(ConnectorAdapter):
    """
    Send Notification - Deliver a message through the notification service.

    Posts to ``{base_url}/api/v1/notifications`` with the node credential's
    ``token`` as a bearer token. ``base_url`` defaults to the
    ``notification_base_url`` setting.
    """

    type = "svc.sendNotification"
    version = "1.2.3"
    category = "action"
    display_name = "Send Notification"
    description = "Send a notification through the notification service"
    config_model = SendNotificationConfig
    estimated_duration_ms = 1000

    def execute(self, context: AdapterContext) -> AdapterResult:
        config: SendNotificationConfig = self.parse_config(context)
        secret = context.get_credential(required=True) or {}
        token = secret.get("token") or secret.get("apiKey")
        if not token:
            raise AdapterError(
                f"Credential '{context.credential_id}' has no 'token'",
                self.type,
            )

        settings = get_settings()
        client = HttpClient(
            base_url=config.base_url or settings.notification_base_url,
            timeout=settings.http_timeout_s,
            headers={"Authorization": f"Bearer {token}"},
            context=context,
        )
        payload = self.payload(config, context)

        context.logger.info(f"Sending {config.channel} notification to {config.recipient}")
        response = client.post(NOTIFICATIONS_ENDPOINT, json=payload)
        response.raise_for_status(self.type)

        body = response.body()
        body = body if isinstance(body, dict) else {}
        return AdapterResult.ok(
            {
                "status": "success",
                "notificationId": body.get("notificationId", ""),
                "deliveryStatus": body.get("deliveryStatus", "queued"),
                "channels": body.get("channels", [config.channel]),
                "sentAt": body.get("sentAt") or datetime.now(timezone.utc).isoformat(),
            },
            notificationId=body.get("notificationId", ""),
        )

    def payload(self, config: SendNotificationConfig, context: AdapterContext) -> Dict[str, Any]:
        payload = config.model_dump(by_alias=True, exclude_none=True, exclude={"base_url"})
        payload["tenantId"] = context.tenant_id
        payload["correlationId"] = f"{context.run.run_id}:{context.node_id}"
        return payload


class SendNotificationV1Adapter(SendNotificationAdapter):
    """Send Notification 1.0.0: predates templates and per-message metadata."""

    version = "1.0.0"

    def payload(self, config: SendNotificationConfig, context: AdapterContext) -> Dict[str, Any]:
        payload = super().payload(config, context)
        payload.pop("template", None)
        payload.pop("metadata", None)
        return payload


__all__ = [
    "ManualTriggerAdapter",
    "NoOpAdapter",
    "SetDataAdapter",
    "SetDataConfig",
    "IfConditionAdapter",
    "IfConditionConfig",
    "HttpRequestAdapter",
    "HttpRequestConfig",
    "SendNotificationAdapter",
    "SendNotificationV1Adapter",
    "SendNotificationConfig",
]
