"""
Connector Registry - Append-only catalog of published connector versions.

The registry hands out immutable snapshots. A resolver works against one
snapshot for the whole call, so publication never blocks resolution and
concurrent resolutions need no coordination.

Usage:
    registry = ConnectorRegistry()
    registry.publish(entry)

    snapshot = registry.snapshot()
    versions = snapshot.versions_of("svc.sendNotification")
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import yaml

from .models import ConnectorRegistryEntry
from .versions import Version


logger = logging.getLogger(__name__)


class DuplicateEntryError(ValueError):
    """Raised when ``(id, version)`` is already published."""

    def __init__(self, connector_id: str, version: str) -> None:
        self.connector_id = connector_id
        self.version = version
        super().__init__(f"Connector '{connector_id}@{version}' is already published")


class RegistrySnapshot:
    """
    Read-only view of the registry at one generation.

    Entries for each connector are kept sorted from newest to oldest by
    SemVer precedence.
    """

    def __init__(
        self,
        entries: Iterable[ConnectorRegistryEntry] = (),
        generation: int = 0,
        registry_version: str = "1.0.0",
    ) -> None:
        self.generation = generation
        self.registry_version = registry_version
        self._entries: Tuple[ConnectorRegistryEntry, ...] = tuple(entries)

        by_id: Dict[str, List[ConnectorRegistryEntry]] = {}
        by_key: Dict[Tuple[str, str], ConnectorRegistryEntry] = {}
        for entry in self._entries:
            if entry.key in by_key:
                raise DuplicateEntryError(entry.id, entry.version)
            by_key[entry.key] = entry
            by_id.setdefault(entry.id, []).append(entry)

        self._by_key = by_key
        self._by_id: Dict[str, Tuple[ConnectorRegistryEntry, ...]] = {
            connector_id: tuple(sorted(items, key=lambda e: e.parsed_version, reverse=True))
            for connector_id, items in by_id.items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], generation: int = 0) -> "RegistrySnapshot":
        """
        Build a snapshot from a registry document.

        Expected shape::

            {"registryVersion": "1.2.0", "connectors": [{...entry...}, ...]}
        """
        entries = [ConnectorRegistryEntry.model_validate(item) for item in data.get("connectors", [])]
        return cls(
            entries,
            generation=generation,
            registry_version=str(data.get("registryVersion", "1.0.0")),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RegistrySnapshot":
        """Load a registry document from a JSON or YAML file."""
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
        return cls.from_dict(data)

    def get(self, connector_id: str, version: str) -> Optional[ConnectorRegistryEntry]:
        """Get a specific entry, matching the version by precedence."""
        entry = self._by_key.get((connector_id, version))
        if entry is not None:
            return entry
        wanted = Version.parse(version)
        for candidate in self._by_id.get(connector_id, ()):
            if candidate.parsed_version == wanted:
                return candidate
        return None

    def versions_of(self, connector_id: str) -> Tuple[ConnectorRegistryEntry, ...]:
        """All entries for a connector, newest first."""
        return self._by_id.get(connector_id, ())

    def latest(self, connector_id: str, include_prerelease: bool = False) -> Optional[ConnectorRegistryEntry]:
        for entry in self.versions_of(connector_id):
            if include_prerelease or not entry.is_prerelease:
                return entry
        return None

    def has_connector(self, connector_id: str) -> bool:
        return connector_id in self._by_id

    def connector_ids(self) -> List[str]:
        return sorted(self._by_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registryVersion": self.registry_version,
            "generation": self.generation,
            "connectors": [e.model_dump(by_alias=True, mode="json") for e in self._entries],
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ConnectorRegistryEntry]:
        return iter(self._entries)

    def __contains__(self, connector_id: str) -> bool:
        return self.has_connector(connector_id)


class ConnectorRegistry:
    """
    Process-wide, append-only connector catalog.

    Writers go through ``publish()``, which swaps in a new snapshot with a
    bumped generation under a lock. Readers call ``snapshot()`` and keep
    using that object; it never changes underneath them.
    """

    def __init__(self, entries: Iterable[ConnectorRegistryEntry] = (), registry_version: str = "1.0.0") -> None:
        self._lock = threading.Lock()
        self._snapshot = RegistrySnapshot(entries, generation=0, registry_version=registry_version)

    @classmethod
    def from_snapshot(cls, snapshot: RegistrySnapshot) -> "ConnectorRegistry":
        return cls(snapshot, registry_version=snapshot.registry_version)

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def publish(self, entry: ConnectorRegistryEntry) -> RegistrySnapshot:
        """
        Publish a new connector version.

        Raises:
            DuplicateEntryError: If ``(id, version)`` already exists
        """
        return self.publish_many([entry])

    def publish_many(self, entries: Iterable[ConnectorRegistryEntry]) -> RegistrySnapshot:
        entries = list(entries)
        with self._lock:
            current = self._snapshot
            snapshot = RegistrySnapshot(
                list(current) + entries,
                generation=current.generation + 1,
                registry_version=current.registry_version,
            )
            self._snapshot = snapshot

        for entry in entries:
            logger.info(f"Published connector {entry} (generation {snapshot.generation})")
        return snapshot

    def __len__(self) -> int:
        return len(self._snapshot)


__all__ = [
    "ConnectorRegistry",
    "RegistrySnapshot",
    "DuplicateEntryError",
]
