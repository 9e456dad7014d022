"""
Core Adapter Pack - Essential utility connectors.

This pack provides basic connectors for workflow operations:
- ManualTrigger: Start a workflow manually
- SetData: Set/modify data fields
- IfCondition: Compare two values for branching
- NoOp: Pass-through (no operation)
- HttpRequest: Outbound HTTP call
- SendNotification: Post a message to the notification service

All adapters are synchronous.
"""

from .adapters import (
    ManualTriggerAdapter,
    NoOpAdapter,
    SetDataAdapter,
    IfConditionAdapter,
    HttpRequestAdapter,
    SendNotificationAdapter,
    SendNotificationV1Adapter,
)
from .manifest import MANIFEST, ADAPTER_CLASSES, REGISTRY_ENTRIES, register_adapters, register_all

__all__ = [
    "ManualTriggerAdapter",
    "NoOpAdapter",
    "SetDataAdapter",
    "IfConditionAdapter",
    "HttpRequestAdapter",
    "SendNotificationAdapter",
    "SendNotificationV1Adapter",
    "MANIFEST",
    "ADAPTER_CLASSES",
    "REGISTRY_ENTRIES",
    "register_adapters",
    "register_all",
]
