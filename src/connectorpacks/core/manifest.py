"""
Core Adapter Pack Manifest - Registration function for entry-points.
"""

from typing import Any, Dict, List, Tuple, Type

from connector_registry import ConnectorRegistryEntry
from connector_sdk import AdapterPackManifest, ConnectorAdapter, ConnectorAdapterFactory
from .adapters import (
    ManualTriggerAdapter,
    NoOpAdapter,
    SetDataAdapter,
    IfConditionAdapter,
    HttpRequestAdapter,
    SendNotificationAdapter,
    SendNotificationV1Adapter,
)


MANIFEST = AdapterPackManifest(
    name="core",
    version="1.0.0",
    description="Core utility connectors for workflow operations",
    author="connectorflow",
    license="MIT",
    adapters=[
        "core.manualTrigger",
        "core.noOp",
        "core.setData",
        "core.ifCondition",
        "core.httpRequest",
        "svc.sendNotification",
    ],
    entry_point="connectorpacks.core",
)


# Adapter classes by type
ADAPTER_CLASSES: Dict[str, Type[ConnectorAdapter]] = {
    "core.manualTrigger": ManualTriggerAdapter,
    "core.noOp": NoOpAdapter,
    "core.setData": SetDataAdapter,
    "core.ifCondition": IfConditionAdapter,
    "core.httpRequest": HttpRequestAdapter,
    "svc.sendNotification": SendNotificationAdapter,
}

# Superseded releases still installable through a lockfile
LEGACY_ADAPTER_CLASSES: List[Type[ConnectorAdapter]] = [
    SendNotificationV1Adapter,
]


def _entry(adapter_class: Type[ConnectorAdapter], **extra: Any) -> ConnectorRegistryEntry:
    return ConnectorRegistryEntry(
        id=adapter_class.type,
        version=adapter_class.version,
        name=adapter_class.display_name,
        description=adapter_class.description,
        category=adapter_class.category,
        tags=("core",),
        **extra,
    )


# Registry entries describing every bundled connector release
REGISTRY_ENTRIES: List[ConnectorRegistryEntry] = [
    _entry(ManualTriggerAdapter),
    _entry(NoOpAdapter),
    _entry(SetDataAdapter),
    _entry(IfConditionAdapter),
    _entry(HttpRequestAdapter),
    _entry(SendNotificationV1Adapter),
    _entry(
        SendNotificationAdapter,
        dependencies={"apis": [{"name": "notifications", "authType": "bearer"}]},
    ),
]


def register_adapters() -> Tuple[AdapterPackManifest, Dict[str, Type[ConnectorAdapter]]]:
    """
    Entry point function for adapter pack discovery.

    Returns tuple of (manifest, adapter_classes).
    """
    return MANIFEST, ADAPTER_CLASSES


def register_all(factory: ConnectorAdapterFactory) -> None:
    """Register current and legacy adapter versions into ``factory``."""
    factory.register_pack(MANIFEST, ADAPTER_CLASSES)
    for adapter_class in LEGACY_ADAPTER_CLASSES:
        factory.register(adapter_class)


__all__ = [
    "MANIFEST",
    "ADAPTER_CLASSES",
    "LEGACY_ADAPTER_CLASSES",
    "REGISTRY_ENTRIES",
    "register_adapters",
    "register_all",
]
