"""
Connector Adapter Factory - Registration table from connector type to adapter.

Supports three ways of filling the table:
1. Manual registration
2. Entry-points (adapter packs installed as plugins)
3. Narrowing a catalog to the versions chosen by the resolver

Every registered adapter class is kept per version; the active table maps a
type to exactly one of them (the highest version unless configured from a
resolution).
"""

from __future__ import annotations

import logging
import threading
from importlib.metadata import entry_points
from typing import Dict, Iterator, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field

from connector_registry.models import ResolutionResult
from connector_registry.versions import Version

from .adapter import ConnectorAdapter
from .errors import AdapterConfigurationError, ConnectorNotFoundError


logger = logging.getLogger(__name__)

# Entry point group for adapter packs
ADAPTER_PACK_ENTRY_POINT = "connectorflow.adapters"


class AdapterPackManifest(BaseModel):
    """Package metadata for an adapter pack."""
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., description="Pack name")
    version: str = Field("1.0.0", description="Pack version")
    description: str = ""
    author: str = ""
    adapters: List[str] = Field(default_factory=list, description="Connector types provided")


class ConnectorAdapterFactory:
    """
    Maps connector type strings to executable adapters.

    Usage:
        factory = ConnectorAdapterFactory()
        factory.discover_entry_points()

        adapter = factory.create("core.httpRequest")
        if adapter is None:
            ...
    """

    def __init__(self) -> None:
        self._versions: Dict[str, Dict[str, Type[ConnectorAdapter]]] = {}
        self._active: Dict[str, Type[ConnectorAdapter]] = {}
        self._packs: Dict[str, AdapterPackManifest] = {}
        self._discovered = False
        self._lock = threading.Lock()

    def register(
        self,
        adapter_class: Type[ConnectorAdapter],
        adapter_type: Optional[str] = None,
    ) -> Type[ConnectorAdapter]:
        """
        Register an adapter class.

        The active adapter for the type becomes the highest registered version.
        """
        adapter_type = adapter_type or adapter_class.type
        version = Version.parse(adapter_class.version)

        with self._lock:
            versions = self._versions.setdefault(adapter_type, {})
            versions[str(version)] = adapter_class
            current = self._active.get(adapter_type)
            if current is None or version >= Version.parse(current.version):
                self._active[adapter_type] = adapter_class

        logger.debug(f"Registered adapter: {adapter_type}@{version}")
        return adapter_class

    def unregister(self, adapter_type: str) -> bool:
        """Remove a type and all its versions. Returns False if it was unknown."""
        with self._lock:
            removed = self._versions.pop(adapter_type, None) is not None
            self._active.pop(adapter_type, None)
        if removed:
            logger.debug(f"Unregistered adapter: {adapter_type}")
        return removed

    def register_pack(
        self,
        manifest: AdapterPackManifest,
        adapter_classes: Dict[str, Type[ConnectorAdapter]],
    ) -> None:
        self._packs[manifest.name] = manifest
        for adapter_type, adapter_class in adapter_classes.items():
            self.register(adapter_class, adapter_type)
        logger.info(f"Registered pack '{manifest.name}' with {len(adapter_classes)} adapters")

    def discover_entry_points(self, force: bool = False) -> int:
        """
        Discover adapter packs via entry points.

        Entry points are declared in pyproject.toml:

            [project.entry-points."connectorflow.adapters"]
            mypack = "mypack:register_adapters"

        The entry point returns ``(manifest, adapter_classes)`` or just the
        ``adapter_classes`` dict.

        Returns:
            Number of packs discovered
        """
        if self._discovered and not force:
            return len(self._packs)

        count = 0
        for ep in entry_points(group=ADAPTER_PACK_ENTRY_POINT):
            try:
                result = ep.load()()
            except Exception as e:
                logger.error(f"Failed to load adapter pack '{ep.name}': {e}")
                continue

            if isinstance(result, tuple):
                manifest, adapter_classes = result
            else:
                adapter_classes = dict(result)
                manifest = AdapterPackManifest(name=ep.name, adapters=sorted(adapter_classes))
            self.register_pack(manifest, adapter_classes)
            count += 1
            logger.info(f"Discovered adapter pack: {ep.name}")

        self._discovered = True
        return count

    @classmethod
    def from_resolution(
        cls,
        result: ResolutionResult,
        catalog: "ConnectorAdapterFactory",
    ) -> "ConnectorAdapterFactory":
        """
        Build a factory whose active table holds exactly the resolved versions.

        Raises:
            AdapterConfigurationError: If the resolution failed or a resolved
                ``(id, version)`` has no adapter in ``catalog``
        """
        if not result.success:
            raise AdapterConfigurationError(
                f"Cannot configure adapters from a failed resolution: {result.error_message}"
            )

        factory = cls()
        missing: List[str] = []
        for connector_id, version in sorted(result.resolved_versions.items()):
            adapter_class = catalog.get_adapter_class(connector_id, version)
            if adapter_class is None:
                missing.append(f"{connector_id}@{version}")
                continue
            factory._versions[connector_id] = {str(Version.parse(version)): adapter_class}
            factory._active[connector_id] = adapter_class

        if missing:
            raise AdapterConfigurationError(f"No adapter implementation for: {', '.join(missing)}")

        factory._packs = dict(catalog._packs)
        factory._discovered = True
        logger.info(f"Configured {len(factory)} adapters from resolution")
        return factory

    def get_adapter_class(
        self,
        adapter_type: str,
        version: Optional[str] = None,
    ) -> Optional[Type[ConnectorAdapter]]:
        """Active class for a type, or the class registered for ``version``."""
        if version is None:
            return self._active.get(adapter_type)
        wanted = Version.parse(version)
        for registered, adapter_class in self._versions.get(adapter_type, {}).items():
            if Version.parse(registered) == wanted:
                return adapter_class
        return None

    def create(self, adapter_type: str) -> Optional[ConnectorAdapter]:
        """New adapter instance, or None if the type is unknown."""
        adapter_class = self._active.get(adapter_type)
        if adapter_class is None:
            return None
        return adapter_class()

    def require(self, adapter_type: str) -> ConnectorAdapter:
        """
        Raises:
            ConnectorNotFoundError: If the type is unknown
        """
        adapter = self.create(adapter_type)
        if adapter is None:
            raise ConnectorNotFoundError(adapter_type)
        return adapter

    def is_available(self, adapter_type: str) -> bool:
        return adapter_type in self._active

    def get_available_types(self) -> List[str]:
        return sorted(self._active)

    def versions_of(self, adapter_type: str) -> List[str]:
        return sorted(self._versions.get(adapter_type, {}), key=Version.parse, reverse=True)

    def estimated_duration_ms(self, adapter_type: str, default: int = 1000) -> int:
        adapter_class = self._active.get(adapter_type)
        return adapter_class.estimated_duration_ms if adapter_class is not None else default

    def list_packs(self) -> List[AdapterPackManifest]:
        return list(self._packs.values())

    def items(self) -> Iterator[Tuple[str, Type[ConnectorAdapter]]]:
        return iter(sorted(self._active.items()))

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, adapter_type: str) -> bool:
        return self.is_available(adapter_type)


# Default factory instance
_default_factory: Optional[ConnectorAdapterFactory] = None


def get_default_factory() -> ConnectorAdapterFactory:
    """Process-wide factory filled from installed adapter packs (lazy initialized)."""
    global _default_factory
    if _default_factory is None:
        _default_factory = ConnectorAdapterFactory()
        _default_factory.discover_entry_points()
    return _default_factory


def reset_default_factory() -> None:
    global _default_factory
    _default_factory = None


__all__ = [
    "ConnectorAdapterFactory",
    "AdapterPackManifest",
    "get_default_factory",
    "reset_default_factory",
    "ADAPTER_PACK_ENTRY_POINT",
]
