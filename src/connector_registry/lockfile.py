"""
Lockfile tooling - generate, check, refresh and persist version pins.

The resolver only reads pins. Everything that produces or inspects a
lockfile document lives here.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import yaml

from .models import (
    DependencySpec,
    Lockfile,
    LockfileValidationResult,
    ResolutionResult,
    ResolutionStrategy,
)
from .registry import RegistrySnapshot
from .resolver import DependencyResolver, find_conflict
from .versions import VersionRange


logger = logging.getLogger(__name__)

DEFAULT_GENERATOR = "connectorflow"

# Keys that mark a full lockfile document rather than a bare pin map
DOCUMENT_KEYS = frozenset({
    "version", "generatedAt", "generated_at", "generatedBy", "generated_by",
    "resolvedVersions", "resolved_versions", "metadata",
})


class LockfileError(ValueError):
    """A lockfile cannot be produced or refreshed."""


def generate_lockfile(
    result: ResolutionResult,
    generated_by: str = DEFAULT_GENERATOR,
    metadata: Optional[Dict[str, Any]] = None,
) -> Lockfile:
    """Build a lockfile document from a successful resolution."""
    if not result.success:
        raise LockfileError(f"Cannot lock a failed resolution: {result.error_message}")

    meta: Dict[str, Any] = {"connectorCount": len(result.resolved_versions)}
    if result.strategy is not None:
        meta["strategy"] = result.strategy.value
    if result.registry_generation is not None:
        meta["registryGeneration"] = result.registry_generation
    meta.update(metadata or {})

    return Lockfile(
        generated_by=generated_by,
        resolved_versions=dict(result.resolved_versions),
        metadata=meta,
    )


def validate_lockfile(
    lockfile: Lockfile,
    snapshot: RegistrySnapshot,
    requested: Optional[Iterable[Union[str, DependencySpec]]] = None,
) -> LockfileValidationResult:
    """
    Check a lockfile against a registry snapshot.

    Errors: pins for unknown connectors or unpublished versions, unmet or
    unpinned peers, incompatible pins, pins outside a requested range.
    Warnings: newer compatible versions, requested connectors without a pin.
    """
    result = LockfileValidationResult(is_valid=True)
    pinned = {}

    for connector_id in sorted(lockfile.resolved_versions):
        version = lockfile.resolved_versions[connector_id]
        if not snapshot.has_connector(connector_id):
            result.errors.append(f"Connector '{connector_id}' is not in the registry")
            result.missing_connectors.append(connector_id)
            continue

        entry = snapshot.get(connector_id, version)
        if entry is None:
            result.errors.append(f"Version '{version}' of '{connector_id}' is not published")
            continue
        pinned[connector_id] = entry

        compatible = VersionRange.parse(f"^{version}")
        newest = next(
            (e for e in snapshot.versions_of(connector_id)
             if not e.is_prerelease and compatible.contains(e.parsed_version)),
            None,
        )
        if newest is not None and newest.parsed_version > entry.parsed_version:
            result.warnings.append(f"'{connector_id}' {version} can be updated to {newest.version}")
            result.outdated_versions.append(f"{connector_id}: {version} -> {newest.version}")

    for connector_id, entry in sorted(pinned.items()):
        for spec in entry.dependencies.peer_specs():
            peer = pinned.get(spec.connector_id)
            if spec.connector_id not in lockfile.resolved_versions:
                result.errors.append(f"'{entry}' requires peer '{spec}' which is not pinned")
            elif peer is not None and not spec.range.contains(peer.parsed_version):
                result.errors.append(f"'{entry}' requires peer '{spec}' but '{peer}' is pinned")

    entries = [pinned[cid] for cid in sorted(pinned)]
    for index, entry in enumerate(entries):
        conflict = find_conflict(entry, entries[index + 1:])
        if conflict is not None:
            result.errors.append(f"Incompatible pins: {conflict.describe()}")

    for item in requested or ():
        spec = DependencySpec.parse(item) if isinstance(item, str) else item
        version = lockfile.resolved_versions.get(spec.connector_id)
        if version is None:
            result.warnings.append(f"Requested connector '{spec.connector_id}' has no pin")
        elif not spec.range.contains(version):
            result.errors.append(f"Pin '{spec.connector_id}@{version}' does not satisfy '{spec.version_range}'")

    result.is_valid = not result.errors
    return result


def update_lockfile(
    lockfile: Lockfile,
    resolver: DependencyResolver,
    strategy: Optional[ResolutionStrategy] = ResolutionStrategy.HIGHEST_COMPATIBLE,
    generated_by: Optional[str] = None,
) -> Lockfile:
    """
    Re-resolve every pinned connector within ``^pinned`` and return a new lockfile.

    Raises:
        LockfileError: If the pins can no longer be resolved together
    """
    requested = [
        DependencySpec(connector_id=cid, version_range=f"^{version}")
        for cid, version in sorted(lockfile.resolved_versions.items())
    ]
    result = resolver.resolve(requested, strategy=strategy)
    if not result.success:
        raise LockfileError(f"Cannot update lockfile: {result.error_message}")

    changed = {
        cid: f"{lockfile.resolved_versions.get(cid)} -> {version}"
        for cid, version in result.resolved_versions.items()
        if lockfile.resolved_versions.get(cid) != version
    }
    for cid, change in changed.items():
        logger.info(f"Lockfile update {cid}: {change}")

    metadata = dict(lockfile.metadata)
    metadata["previousGeneratedAt"] = lockfile.generated_at.isoformat()
    metadata["updated"] = changed
    return generate_lockfile(result, generated_by or lockfile.generated_by or DEFAULT_GENERATOR, metadata)


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def load_lockfile(path: Union[str, Path]) -> Lockfile:
    """
    Load a lockfile from JSON or YAML (by file suffix).

    Accepts a full lockfile document or a bare ``{connectorId: version}`` map.

    Raises:
        LockfileError: If the file holds neither
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    data = (yaml.safe_load(text) if _is_yaml(path) else json.loads(text)) or {}
    if not isinstance(data, dict):
        raise LockfileError(f"Lockfile {path} must contain a mapping")

    if DOCUMENT_KEYS.isdisjoint(data):
        bad = sorted(str(cid) for cid, version in data.items() if not isinstance(version, str))
        if bad:
            raise LockfileError(f"Lockfile {path} pins must be version strings: {', '.join(bad)}")
        data = {"resolvedVersions": data}
    return Lockfile.model_validate(data)


def save_lockfile(lockfile: Lockfile, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if _is_yaml(path):
        text = yaml.safe_dump(lockfile.model_dump(mode="json", by_alias=True), sort_keys=False)
    else:
        text = lockfile.model_dump_json(by_alias=True, indent=2) + "\n"
    path.write_text(text, encoding="utf-8")
    logger.info(f"Wrote lockfile with {len(lockfile.resolved_versions)} pins to {path}")
    return path


__all__ = [
    "LockfileError",
    "generate_lockfile",
    "validate_lockfile",
    "update_lockfile",
    "load_lockfile",
    "save_lockfile",
]
