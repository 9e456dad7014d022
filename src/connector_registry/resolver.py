"""
Dependency Resolver - Consistent connector version assignment.

Resolution is a backtracking search over one immutable registry snapshot:

1. Each requested connector contributes a range; peer requirements of every
   tentatively selected entry contribute more. Ranges for the same connector
   are merged by intersection.
2. The connector with the fewest viable candidates is decided next
   (ties broken by id), and its candidates are tried in strategy order.
3. Candidates that violate an ``incompatibleWith`` rule against the current
   selection are discarded. Under ``failFast`` such a violation ends the
   resolution instead.
4. A complete selection is checked once more for incompatibilities before
   it is returned.

``resolve()`` never raises: every failure comes back as a ResolutionResult
with ``success=False`` and a message naming the offending constraint or pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .models import (
    ConflictInfo,
    ConnectorRegistryEntry,
    DependencySpec,
    Lockfile,
    ResolutionDiagnostics,
    ResolutionResult,
    ResolutionStrategy,
)
from .registry import ConnectorRegistry, RegistrySnapshot
from .versions import InvalidVersionFormat, Version, VersionRange


logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10_000

RequestLike = Union[str, DependencySpec]
LockfileLike = Union[Lockfile, Mapping[str, str]]


@dataclass(frozen=True)
class _Requirement:
    """One range constraint on a connector and who imposed it."""
    range: VersionRange
    source: str

    def describe(self, connector_id: str) -> str:
        return f"'{connector_id}@{self.range}' (required by {self.source})"


class _Abort(Exception):
    """Stops the search: fail-fast conflict or exhausted step budget."""

    def __init__(self, message: str, conflicts: Sequence[ConflictInfo] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.conflicts = list(conflicts)


Constraints = Dict[str, Tuple[_Requirement, ...]]
Selection = Dict[str, ConnectorRegistryEntry]


def find_conflict(
    entry: ConnectorRegistryEntry,
    selected: Iterable[ConnectorRegistryEntry],
) -> Optional[ConflictInfo]:
    """First incompatibility between ``entry`` and any selected entry, in either direction."""
    for other in selected:
        if other.id == entry.id:
            continue
        for spec in entry.conflict_rules.incompatible_specs():
            if spec.connector_id == other.id and spec.range.contains(other.parsed_version):
                return ConflictInfo(
                    connector_id=entry.id,
                    version=entry.version,
                    other_id=other.id,
                    other_version=other.version,
                    rule=str(spec),
                )
        for spec in other.conflict_rules.incompatible_specs():
            if spec.connector_id == entry.id and spec.range.contains(entry.parsed_version):
                return ConflictInfo(
                    connector_id=other.id,
                    version=other.version,
                    other_id=entry.id,
                    other_version=entry.version,
                    rule=str(spec),
                )
    return None


class _Search:
    """State of a single resolve call."""

    def __init__(
        self,
        snapshot: RegistrySnapshot,
        strategy: Optional[ResolutionStrategy],
        pins: Dict[str, Version],
        max_steps: int,
    ) -> None:
        self.snapshot = snapshot
        self.strategy = strategy
        self.pins = pins
        self.max_steps = max_steps
        self.steps = 0
        self.failure: Optional[Tuple[str, List[ConflictInfo]]] = None
        self._ignored_pins: set = set()

    # --------------------------------------------------------------------------
    # Candidate collection
    # --------------------------------------------------------------------------

    def strategy_for(self, connector_id: str) -> ResolutionStrategy:
        if self.strategy is not None:
            return self.strategy
        entries = self.snapshot.versions_of(connector_id)
        if entries:
            return entries[0].conflict_rules.resolution_strategy
        return ResolutionStrategy.HIGHEST_COMPATIBLE

    def preferred_version(self, connector_id: str, selected: Selection) -> Optional[str]:
        for selected_id in sorted(selected):
            hint = selected[selected_id].conflict_rules.prefer_version.get(connector_id)
            if hint:
                return hint
        entries = self.snapshot.versions_of(connector_id)
        if entries:
            return entries[0].conflict_rules.prefer_version.get(connector_id)
        return None

    def matching(self, connector_id: str, requirements: Tuple[_Requirement, ...]) -> List[ConnectorRegistryEntry]:
        merged = VersionRange.any()
        for requirement in requirements:
            merged = merged.intersect(requirement.range)
        matching = [e for e in self.snapshot.versions_of(connector_id) if merged.contains(e.parsed_version)]

        pin = self.pins.get(connector_id)
        if pin is not None:
            pinned = [e for e in matching if e.parsed_version == pin]
            if pinned:
                return pinned
            if connector_id not in self._ignored_pins:
                self._ignored_pins.add(connector_id)
                logger.warning(
                    f"Lockfile pin {connector_id}@{pin} does not satisfy "
                    f"{merged} or is not published; resolving normally"
                )
        return matching

    def order(self, connector_id: str, candidates: List[ConnectorRegistryEntry], selected: Selection) -> List[ConnectorRegistryEntry]:
        strategy = self.strategy_for(connector_id)
        if strategy == ResolutionStrategy.PREFER_STABLE:
            stable = [e for e in candidates if not e.is_prerelease]
            if stable:
                candidates = stable

        preferred = self.preferred_version(connector_id, selected)
        # Hint first among precedence-equal entries, then newest first.
        ordered = sorted(candidates, key=lambda e: (e.version != preferred, e.version))
        return sorted(ordered, key=lambda e: e.parsed_version, reverse=True)

    def describe_unsatisfied(self, connector_id: str, requirements: Tuple[_Requirement, ...]) -> str:
        constraints = " and ".join(r.describe(connector_id) for r in requirements)
        available = [e.version for e in self.snapshot.versions_of(connector_id)]
        if not available:
            return f"Connector '{connector_id}' is not in the registry; needed for {constraints}"
        return (
            f"No version of '{connector_id}' satisfies {constraints}. "
            f"Available versions: {', '.join(available)}"
        )

    def record(self, message: str, conflicts: Sequence[ConflictInfo] = ()) -> None:
        if self.failure is None:
            self.failure = (message, list(conflicts))

    # --------------------------------------------------------------------------
    # Search
    # --------------------------------------------------------------------------

    def solve(self, constraints: Constraints, selected: Selection) -> Optional[Selection]:
        pending = sorted(cid for cid in constraints if cid not in selected)
        if not pending:
            return selected

        # Most constrained connector first.
        best_id = None
        best: Optional[List[ConnectorRegistryEntry]] = None
        best_conflicts: List[ConflictInfo] = []
        for connector_id in pending:
            matching = self.matching(connector_id, constraints[connector_id])
            if not matching:
                self.record(self.describe_unsatisfied(connector_id, constraints[connector_id]))
                return None

            ordered = self.order(connector_id, matching, selected)
            viable: List[ConnectorRegistryEntry] = []
            conflicts: List[ConflictInfo] = []
            for entry in ordered:
                conflict = find_conflict(entry, selected.values())
                if conflict is None:
                    viable.append(entry)
                else:
                    conflicts.append(conflict)

            if self.strategy_for(connector_id) == ResolutionStrategy.FAIL_FAST and conflicts:
                if not viable or ordered[0] is not viable[0]:
                    raise _Abort(f"Conflict (failFast): {conflicts[0].describe()}", conflicts[:1])

            if not viable:
                described = "; ".join(c.describe() for c in conflicts)
                self.record(
                    f"No version of '{connector_id}' is compatible with the current selection: {described}",
                    conflicts,
                )
                return None

            if best is None or len(viable) < len(best):
                best_id, best, best_conflicts = connector_id, viable, conflicts

        fail_fast = self.strategy_for(best_id) == ResolutionStrategy.FAIL_FAST
        for entry in best:
            self.steps += 1
            if self.steps > self.max_steps:
                raise _Abort(
                    f"Resolution exceeded {self.max_steps} steps without finding a consistent selection"
                )

            extended = self.extend(entry, constraints, selected)
            if extended is not None:
                result = self.solve(extended, {**selected, best_id: entry})
                if result is not None:
                    return result
            if fail_fast:
                message, conflicts = self.failure or (f"Cannot resolve '{entry}'", [])
                raise _Abort(f"{message} (failFast)", conflicts)

        return None

    def extend(
        self,
        entry: ConnectorRegistryEntry,
        constraints: Constraints,
        selected: Selection,
    ) -> Optional[Constraints]:
        """Add ``entry``'s peer requirements, or None if a selected peer violates them."""
        extended = dict(constraints)
        for spec in entry.dependencies.peer_specs():
            if spec.connector_id == entry.id:
                continue
            existing = selected.get(spec.connector_id)
            if existing is not None and not spec.range.contains(existing.parsed_version):
                self.record(
                    f"'{entry}' requires peer '{spec}' but '{existing}' is already selected"
                )
                return None
            requirement = _Requirement(spec.range, f"'{entry}'")
            extended[spec.connector_id] = extended.get(spec.connector_id, ()) + (requirement,)
        return extended


class DependencyResolver:
    """
    Resolves requested connectors to a consistent set of versions.

    Example:
        resolver = DependencyResolver(registry.snapshot())
        result = resolver.resolve(["svc.sendNotification@^1.0.0"])
        if result.success:
            print(result.resolved_versions)
    """

    def __init__(
        self,
        registry: Union[RegistrySnapshot, ConnectorRegistry],
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self._registry = registry
        self.max_steps = max_steps

    @property
    def snapshot(self) -> RegistrySnapshot:
        if isinstance(self._registry, ConnectorRegistry):
            return self._registry.snapshot()
        return self._registry

    def resolve(
        self,
        requested: Iterable[RequestLike],
        strategy: Optional[ResolutionStrategy] = None,
        lockfile: Optional[LockfileLike] = None,
    ) -> ResolutionResult:
        """
        Resolve ``requested`` against the current registry snapshot.

        Args:
            requested: DependencySpec objects or ``"connectorId@range"`` strings
            strategy: Strategy for every connector; None uses each connector's
                declared default
            lockfile: Pins to honor where they still satisfy the merged range

        Returns:
            ResolutionResult with the full map on success, no versions on failure
        """
        snapshot = self.snapshot
        generation = snapshot.generation

        try:
            specs = [DependencySpec.parse(r) if isinstance(r, str) else r for r in requested]
        except ValueError as e:
            return ResolutionResult.failure(str(e), strategy=strategy, generation=generation)

        if not specs:
            return ResolutionResult(success=True, strategy=strategy, registry_generation=generation)

        constraints: Constraints = {}
        for spec in specs:
            requirement = _Requirement(spec.range, "request")
            constraints[spec.connector_id] = constraints.get(spec.connector_id, ()) + (requirement,)

        search = _Search(snapshot, strategy, self._pins(lockfile), self.max_steps)
        try:
            selection = search.solve(constraints, {})
        except _Abort as abort:
            logger.info(f"Resolution aborted: {abort.message}")
            return ResolutionResult.failure(abort.message, abort.conflicts, strategy, generation)

        if selection is None:
            message, conflicts = search.failure or ("Resolution failed", [])
            logger.info(f"Resolution failed after {search.steps} steps: {message}")
            return ResolutionResult.failure(message, conflicts, strategy, generation)

        conflict = self._final_conflict(selection)
        if conflict is not None:
            return ResolutionResult.failure(
                f"Incompatible connectors selected: {conflict.describe()}",
                [conflict],
                strategy,
                generation,
            )

        resolved = {cid: selection[cid].version for cid in sorted(selection)}
        logger.debug(f"Resolved {len(resolved)} connectors in {search.steps} steps")
        return ResolutionResult(
            success=True,
            resolved_versions=resolved,
            strategy=strategy,
            registry_generation=generation,
        )

    def explain_failure(
        self,
        requested: Iterable[RequestLike],
        strategy: Optional[ResolutionStrategy] = None,
        lockfile: Optional[LockfileLike] = None,
    ) -> ResolutionDiagnostics:
        """Describe why ``requested`` does or does not resolve, with suggestions."""
        requested = list(requested)
        snapshot = self.snapshot
        diagnostics = ResolutionDiagnostics()

        specs: List[DependencySpec] = []
        for item in requested:
            try:
                specs.append(DependencySpec.parse(item) if isinstance(item, str) else item)
            except ValueError as e:
                diagnostics.conflicts.append(str(e))
                diagnostics.suggestions.append("Use the form 'connectorId@range', e.g. 'svc.sendNotification@^1.0.0'")

        for spec in specs:
            entries = snapshot.versions_of(spec.connector_id)
            diagnostics.available_versions[spec.connector_id] = [e.version for e in entries]
            if not entries:
                diagnostics.conflicts.append(f"Connector '{spec.connector_id}' is not in the registry")
                diagnostics.suggestions.append(f"Check the connector id '{spec.connector_id}' or publish it first")
                continue
            if not any(spec.range.contains(e.parsed_version) for e in entries):
                latest = snapshot.latest(spec.connector_id) or entries[0]
                diagnostics.conflicts.append(f"No version of '{spec.connector_id}' satisfies '{spec.version_range}'")
                diagnostics.suggestions.append(
                    f"Widen the range for '{spec.connector_id}', e.g. '^{latest.version}'"
                )

        if specs and not diagnostics.conflicts:
            result = self.resolve(specs, strategy, lockfile)
            if not result.success:
                diagnostics.conflicts.append(result.error_message or "Resolution failed")
                for conflict in result.conflicts:
                    diagnostics.suggestions.append(
                        f"Remove '{conflict.other_id}' or choose a version outside '{conflict.rule}'"
                    )
                if not result.conflicts:
                    diagnostics.suggestions.append(
                        "Relax the requested ranges or align peer requirements across connectors"
                    )

        diagnostics.has_conflicts = bool(diagnostics.conflicts)
        return diagnostics

    def _pins(self, lockfile: Optional[LockfileLike]) -> Dict[str, Version]:
        if lockfile is None:
            return {}
        pins = lockfile.resolved_versions if isinstance(lockfile, Lockfile) else dict(lockfile)
        parsed: Dict[str, Version] = {}
        for connector_id, version in pins.items():
            try:
                parsed[connector_id] = Version.parse(version)
            except InvalidVersionFormat as e:
                logger.warning(f"Ignoring lockfile pin for {connector_id}: {e}")
        return parsed

    @staticmethod
    def _final_conflict(selection: Selection) -> Optional[ConflictInfo]:
        entries = [selection[cid] for cid in sorted(selection)]
        for index, entry in enumerate(entries):
            conflict = find_conflict(entry, entries[index + 1:])
            if conflict is not None:
                return conflict
        return None


__all__ = [
    "DependencyResolver",
    "DEFAULT_MAX_STEPS",
    "find_conflict",
]
