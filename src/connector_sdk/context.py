"""
Adapter Context - What an adapter sees while it runs, and what it returns.

The engine builds one AdapterContext per node attempt. Node configuration is
carried as an opaque ConnectorConfig payload: the engine renders templates in
it but never interprets it; only the adapter validates it against its own
config model.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, TypeVar, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from connectorflow.observability import get_logger

from .errors import AdapterError, AdapterTimeoutError

if TYPE_CHECKING:
    from .credentials import CredentialProvider


logger = logging.getLogger(__name__)

ConfigModelT = TypeVar("ConfigModelT", bound=BaseModel)


# ==============================================================================
# ConnectorConfig - Tagged opaque payload
# ==============================================================================

class ConnectorConfig(BaseModel):
    """
    Connector-owned configuration of a workflow node.

    Workflow documents carry it as written by the author; ``from_payload``
    wraps it without looking inside.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field("", description="Connector type this payload belongs to")
    values: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any, connector_type: str = "") -> "ConnectorConfig":
        """
        Wrap a node's config as found in a workflow document.

        Only the exact tagged form ``{"type": str, "values": dict}`` is
        unwrapped; any other mapping becomes ``values`` unchanged, even when
        it has a ``type`` or ``values`` key of its own.

        Raises:
            ValueError: If ``data`` is not a mapping
        """
        if isinstance(data, ConnectorConfig):
            config = data
        elif data is None:
            config = cls()
        elif not isinstance(data, dict):
            raise ValueError(f"Node config must be a mapping, got {type(data).__name__}")
        elif set(data) == {"type", "values"} and isinstance(data["type"], str) and isinstance(data["values"], dict):
            config = cls(type=data["type"], values=data["values"])
        else:
            config = cls(values=data)

        if connector_type and not config.type:
            config = cls(type=connector_type, values=config.values)
        return config

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def with_values(self, values: Dict[str, Any]) -> "ConnectorConfig":
        return ConnectorConfig(type=self.type, values=values)

    def parse_as(self, model: Type[ConfigModelT]) -> ConfigModelT:
        """
        Validate ``values`` against an adapter's config model.

        Raises:
            AdapterError: If the payload does not match the model
        """
        try:
            return model.model_validate(self.values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise AdapterError(f"Invalid configuration for '{self.type}': {problems}", self.type) from e


# ==============================================================================
# RunMetadata / AdapterContext
# ==============================================================================

@dataclass(frozen=True)
class RunMetadata:
    """Identity of the run a node attempt belongs to."""
    run_id: str
    workflow_id: str
    tenant_id: str = ""
    mode: str = "manual"
    triggered_by: str = ""


class AdapterContext:
    """
    Runtime context handed to ``ConnectorAdapter.execute()``.

    Provides access to:
    - Rendered configuration
    - Inputs (run input merged with upstream outputs)
    - Credential lookup keyed by (credential_id, tenant_id)
    - Deadline and cancellation checks
    """

    def __init__(
        self,
        node_id: str,
        node_type: str,
        config: Optional[ConnectorConfig] = None,
        inputs: Optional[Dict[str, Any]] = None,
        run: Optional[RunMetadata] = None,
        credential_id: Optional[str] = None,
        credentials: Optional["CredentialProvider"] = None,
        timeout_s: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        attempt: int = 1,
    ) -> None:
        self.node_id = node_id
        self.node_type = node_type
        self.config = config or ConnectorConfig(type=node_type)
        self.inputs: Dict[str, Any] = inputs or {}
        self.run = run or RunMetadata(run_id="", workflow_id="")
        self.credential_id = credential_id
        self.attempt = attempt
        self.timeout_s = timeout_s
        self.deadline = time.monotonic() + timeout_s if timeout_s else None
        self._credentials = credentials
        self._cancel_event = cancel_event or threading.Event()
        self.logger = get_logger(
            f"connector.{node_type}",
            run_id=self.run.run_id,
            workflow_id=self.run.workflow_id,
            node_id=node_id,
            tenant_id=self.run.tenant_id,
        )

    @property
    def tenant_id(self) -> str:
        return self.run.tenant_id

    def get_config(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def get_credential(self, required: bool = True) -> Optional[Dict[str, Any]]:
        """
        Look up this node's credential.

        Raises:
            AdapterError: If required and missing or no provider is configured
        """
        if not self.credential_id:
            if required:
                raise AdapterError(f"Node '{self.node_id}' has no credentialId", self.node_type)
            return None
        if self._credentials is None:
            raise AdapterError("No credential provider configured", self.node_type)

        secret = self._credentials.get_secret(self.credential_id, self.tenant_id)
        if secret is None and required:
            raise AdapterError(
                f"Credential '{self.credential_id}' not found for tenant '{self.tenant_id}'",
                self.node_type,
            )
        return secret

    # ==== Deadline / cancellation ====

    def remaining_time(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check_deadline(self) -> None:
        """Raise AdapterTimeoutError once the node timeout has elapsed."""
        remaining = self.remaining_time()
        if remaining is not None and remaining <= 0:
            raise AdapterTimeoutError(
                f"Node '{self.node_id}' exceeded its {self.timeout_s}s timeout",
                timeout=self.timeout_s or 0,
            )


# ==============================================================================
# AdapterResult
# ==============================================================================

@dataclass
class AdapterResult:
    """Outcome of one adapter invocation."""
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    duration_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, output: Optional[Dict[str, Any]] = None, **metadata: Any) -> "AdapterResult":
        return cls(success=True, output=output or {}, metadata=metadata)

    @classmethod
    def fail(cls, message: str, output: Optional[Dict[str, Any]] = None, **metadata: Any) -> "AdapterResult":
        return cls(success=False, output=output or {}, error_message=message, metadata=metadata)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_error(self) -> bool:
        return not self.success


__all__ = [
    "ConnectorConfig",
    "RunMetadata",
    "AdapterContext",
    "AdapterResult",
]
