"""
Connector Registry - Versioned connector catalog and dependency resolution.

This package provides:
- Version / VersionRange: SemVer parsing and npm-style range matching
- ConnectorRegistryEntry: Metadata of one published connector version
- ConnectorRegistry / RegistrySnapshot: Append-only catalog with immutable views
- DependencyResolver: Consistent version assignment for requested connectors
- Lockfile tooling: generate, validate, update and persist pins

Resolution never mutates the registry and never raises; failures are
returned as ResolutionResult(success=False).
"""

from .versions import (
    Version,
    VersionRange,
    InvalidVersionFormat,
    InvalidRangeFormat,
    compare,
    satisfies,
    is_prerelease,
    max_satisfying,
)
from .models import (
    ResolutionStrategy,
    ConnectorRegistryEntry,
    ConnectorDependencies,
    ConflictRules,
    DependencySpec,
    ConflictInfo,
    ResolutionResult,
    Lockfile,
    LockfileValidationResult,
    ResolutionDiagnostics,
)
from .registry import ConnectorRegistry, RegistrySnapshot, DuplicateEntryError
from .resolver import DependencyResolver
from .lockfile import (
    LockfileError,
    generate_lockfile,
    validate_lockfile,
    update_lockfile,
    load_lockfile,
    save_lockfile,
)

__all__ = [
    # Versions
    "Version",
    "VersionRange",
    "InvalidVersionFormat",
    "InvalidRangeFormat",
    "compare",
    "satisfies",
    "is_prerelease",
    "max_satisfying",
    # Models
    "ResolutionStrategy",
    "ConnectorRegistryEntry",
    "ConnectorDependencies",
    "ConflictRules",
    "DependencySpec",
    "ConflictInfo",
    "ResolutionResult",
    "Lockfile",
    "LockfileValidationResult",
    "ResolutionDiagnostics",
    # Registry
    "ConnectorRegistry",
    "RegistrySnapshot",
    "DuplicateEntryError",
    # Resolver
    "DependencyResolver",
    # Lockfile
    "LockfileError",
    "generate_lockfile",
    "validate_lockfile",
    "update_lockfile",
    "load_lockfile",
    "save_lockfile",
]
