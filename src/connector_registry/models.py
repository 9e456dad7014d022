"""
Connector Registry Models - Published connector metadata and resolution records.

All models are immutable once constructed: registry entries are never
mutated after publication and resolution results are produced fresh per call.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .versions import InvalidVersionFormat, Version, VersionRange


class ResolutionStrategy(str, Enum):
    """How a version is picked among the candidates satisfying a range."""
    HIGHEST_COMPATIBLE = "highestCompatible"
    PREFER_STABLE = "preferStable"
    FAIL_FAST = "failFast"


class RuntimeDependency(BaseModel):
    """
    Pinned external package a connector needs at runtime.

    Informational only: the resolver never inspects it.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    package_name: str = Field(..., alias="packageName")
    version: str = Field("", description="Package version or range")
    ecosystem: str = Field("pypi", description="Package ecosystem (pypi, npm, nuget, ...)")


class ApiDependency(BaseModel):
    """External API a connector talks to."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    name: str
    url: str = ""
    auth_type: str = Field("", alias="authType")


class ConnectorDependencies(BaseModel):
    """Declared dependencies of a registry entry."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    runtime: Optional[RuntimeDependency] = None
    peer: Tuple[str, ...] = Field(
        default=(),
        description="Peer connectors as 'connectorId@range' strings",
    )
    apis: Tuple[ApiDependency, ...] = ()

    @field_validator("peer")
    @classmethod
    def validate_peer(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for spec in v:
            DependencySpec.parse(spec)
        return v

    def peer_specs(self) -> List["DependencySpec"]:
        return [DependencySpec.parse(spec) for spec in self.peer]


class ConflictRules(BaseModel):
    """Compatibility rules attached to a registry entry."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    incompatible_with: Tuple[str, ...] = Field(
        default=(),
        alias="incompatibleWith",
        description="Connectors this entry cannot be installed with, as 'connectorId@range'",
    )
    prefer_version: Dict[str, str] = Field(
        default_factory=dict,
        alias="preferVersion",
        description="Tie-break hints: connectorId -> version",
    )
    resolution_strategy: ResolutionStrategy = Field(
        ResolutionStrategy.HIGHEST_COMPATIBLE,
        alias="resolutionStrategy",
    )

    @field_validator("incompatible_with")
    @classmethod
    def validate_incompatible(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for spec in v:
            DependencySpec.parse(spec)
        return v

    def incompatible_specs(self) -> List["DependencySpec"]:
        return [DependencySpec.parse(spec) for spec in self.incompatible_with]


class ConnectorRegistryEntry(BaseModel):
    """
    A single published connector version.

    Identity is ``(id, version)``. Entries are frozen: a new release is a new
    entry, never an edit of an existing one.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Connector identifier, e.g. 'svc.sendNotification'")
    version: str = Field(..., description="Strict semantic version")
    name: str = ""
    description: str = ""
    category: str = ""
    tags: Tuple[str, ...] = ()
    manifest_url: str = Field("", alias="manifestUrl")

    dependencies: ConnectorDependencies = Field(default_factory=ConnectorDependencies)
    conflict_rules: ConflictRules = Field(default_factory=ConflictRules, alias="conflictRules")

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        Version.parse(v)
        return v.strip()

    @property
    def key(self) -> Tuple[str, str]:
        return (self.id, self.version)

    @property
    def parsed_version(self) -> Version:
        return Version.parse(self.version)

    @property
    def is_prerelease(self) -> bool:
        return self.parsed_version.is_prerelease

    def __str__(self) -> str:
        return f"{self.id}@{self.version}"


class DependencySpec(BaseModel):
    """
    A resolution request: a connector id and the range it must satisfy.

    Parsed from ``"connectorId@range"``; a missing range means ``*``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    connector_id: str = Field(..., min_length=1, alias="connectorId")
    version_range: str = Field("*", alias="versionRange")

    @classmethod
    def parse(cls, spec: str) -> "DependencySpec":
        if not isinstance(spec, str) or not spec.strip():
            raise ValueError(f"Invalid dependency spec: {spec!r}")
        connector_id, sep, range_text = spec.strip().partition("@")
        if not connector_id:
            raise ValueError(f"Invalid dependency spec '{spec}': missing connector id")
        range_text = range_text.strip() if sep else "*"
        VersionRange.parse(range_text or "*")
        return cls(connector_id=connector_id, version_range=range_text or "*")

    @property
    def range(self) -> VersionRange:
        return VersionRange.parse(self.version_range)

    def __str__(self) -> str:
        return f"{self.connector_id}@{self.version_range}"


class ConflictInfo(BaseModel):
    """A pair of selected connectors matched by an incompatibility rule."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    connector_id: str = Field(..., alias="connectorId")
    version: str
    other_id: str = Field(..., alias="otherId")
    other_version: str = Field(..., alias="otherVersion")
    rule: str = ""

    def describe(self) -> str:
        return (
            f"'{self.connector_id}@{self.version}' is incompatible with "
            f"'{self.other_id}@{self.other_version}' (rule '{self.rule}')"
        )


class ResolutionResult(BaseModel):
    """Outcome of a single resolution call."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    success: bool
    resolved_versions: Dict[str, str] = Field(default_factory=dict, alias="resolvedVersions")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    conflicts: Tuple[ConflictInfo, ...] = ()
    strategy: Optional[ResolutionStrategy] = None
    registry_generation: Optional[int] = Field(None, alias="registryGeneration")

    @classmethod
    def failure(
        cls,
        message: str,
        conflicts: Optional[List[ConflictInfo]] = None,
        strategy: Optional[ResolutionStrategy] = None,
        generation: Optional[int] = None,
    ) -> "ResolutionResult":
        return cls(
            success=False,
            error_message=message,
            conflicts=tuple(conflicts or ()),
            strategy=strategy,
            registry_generation=generation,
        )


class Lockfile(BaseModel):
    """
    Lockfile document pinning resolved versions.

    The resolver only reads ``resolved_versions``; the rest is metadata for
    the caller that persists it.
    """
    model_config = ConfigDict(populate_by_name=True)

    version: str = "1.0"
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="generatedAt")
    generated_by: str = Field("", alias="generatedBy")
    resolved_versions: Dict[str, str] = Field(default_factory=dict, alias="resolvedVersions")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("resolved_versions")
    @classmethod
    def validate_pins(cls, v: Dict[str, str]) -> Dict[str, str]:
        for connector_id, pinned in v.items():
            try:
                Version.parse(pinned)
            except InvalidVersionFormat as e:
                raise ValueError(f"Lockfile pin for '{connector_id}': {e}") from e
        return v


class LockfileValidationResult(BaseModel):
    """Result of checking a lockfile against a registry snapshot."""
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    outdated_versions: List[str] = Field(default_factory=list, alias="outdatedVersions")
    missing_connectors: List[str] = Field(default_factory=list, alias="missingConnectors")


class ResolutionDiagnostics(BaseModel):
    """Explanation of why a request does or does not resolve."""
    model_config = ConfigDict(populate_by_name=True)

    has_conflicts: bool = Field(False, alias="hasConflicts")
    conflicts: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    available_versions: Dict[str, List[str]] = Field(default_factory=dict, alias="availableVersions")


__all__ = [
    "ResolutionStrategy",
    "RuntimeDependency",
    "ApiDependency",
    "ConnectorDependencies",
    "ConflictRules",
    "ConnectorRegistryEntry",
    "DependencySpec",
    "ConflictInfo",
    "ResolutionResult",
    "Lockfile",
    "LockfileValidationResult",
    "ResolutionDiagnostics",
]
