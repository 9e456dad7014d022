"""
ConnectorAdapter - Abstract base class for connector implementations.

Every connector exposes exactly one capability to the engine:

    execute(context: AdapterContext) -> AdapterResult

Adapters may declare a pydantic ``config_model``; ``parse_config()``
validates the node's opaque config against it.

SYNC SAFE: execute() is synchronous. The engine runs it on a worker
thread and enforces the node timeout around it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, Optional, Type

from pydantic import BaseModel

from .context import AdapterContext, AdapterResult
from .errors import AdapterError


logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_DURATION_MS = 1000


class ConnectorAdapter(ABC):
    """
    Base class for all connector adapters.

    Adapters define:
    - type: Connector id (e.g., "svc.sendNotification")
    - version: Semantic version of the connector this adapter implements
    - category: trigger | action | transform
    - config_model: Optional pydantic model for the node config

    Example:

        class EchoConfig(BaseModel):
            message: str

        class EchoAdapter(ConnectorAdapter):
            type = "demo.echo"
            version = "1.0.0"
            config_model = EchoConfig

            def execute(self, context):
                config = self.parse_config(context)
                return AdapterResult.ok({"message": config.message})
    """

    type: ClassVar[str] = "base"
    version: ClassVar[str] = "1.0.0"
    category: ClassVar[str] = "action"
    display_name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    config_model: ClassVar[Optional[Type[BaseModel]]] = None
    estimated_duration_ms: ClassVar[int] = DEFAULT_ESTIMATED_DURATION_MS

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"connector.{self.type}")

    @abstractmethod
    def execute(self, context: AdapterContext) -> AdapterResult:
        """
        Run the connector once.

        Returns:
            AdapterResult with ``success`` and ``output``

        Raises:
            AdapterError: On operation failure (recorded as a failed node)
            AdapterApiError: On external API failure
            AdapterTimeoutError: When the node deadline is hit
        """
        raise NotImplementedError

    # ==== Helpers for subclasses ====

    def parse_config(self, context: AdapterContext) -> Any:
        """Validate the node config against ``config_model``; raw values if none."""
        if self.config_model is None:
            return dict(context.config.values)
        return context.config.parse_as(self.config_model)

    def fail(self, message: str, **metadata: Any) -> AdapterResult:
        self.logger.warning(f"{self.type} failed: {message}")
        return AdapterResult.fail(message, **metadata)

    def require(self, context: AdapterContext, key: str) -> Any:
        value = context.get_config(key)
        if value is None or value == "":
            raise AdapterError(f"Missing required config '{key}'", self.type)
        return value

    @classmethod
    def get_definition(cls) -> Dict[str, Any]:
        """Adapter metadata for listings and registry entries."""
        definition: Dict[str, Any] = {
            "type": cls.type,
            "version": cls.version,
            "category": cls.category,
            "displayName": cls.display_name or cls.type,
            "description": cls.description,
            "estimatedDurationMs": cls.estimated_duration_ms,
        }
        if cls.config_model is not None:
            definition["configSchema"] = cls.config_model.model_json_schema()
        return definition


__all__ = [
    "ConnectorAdapter",
    "DEFAULT_ESTIMATED_DURATION_MS",
]
