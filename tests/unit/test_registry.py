"""Tests for registry entries, snapshots and publication."""
import json
import threading

import pytest
from pydantic import ValidationError

from connector_registry import (
    ConnectorRegistry,
    ConnectorRegistryEntry,
    DependencySpec,
    DuplicateEntryError,
    RegistrySnapshot,
    ResolutionStrategy,
)


class TestRegistryEntry:
    """Test ConnectorRegistryEntry validation."""

    def test_parses_wire_document(self):
        entry = ConnectorRegistryEntry.model_validate({
            "id": "svc.sendNotification",
            "version": "1.2.3",
            "name": "Send Notification",
            "tags": ["notify"],
            "dependencies": {
                "runtime": {"packageName": "notify-sdk", "version": "4.1.0"},
                "peer": ["core.httpRequest@^1.0.0"],
            },
            "conflictRules": {
                "incompatibleWith": ["legacy.notify@<2.0.0"],
                "preferVersion": {"core.httpRequest": "1.0.0"},
                "resolutionStrategy": "preferStable",
            },
        })

        assert entry.key == ("svc.sendNotification", "1.2.3")
        assert str(entry) == "svc.sendNotification@1.2.3"
        assert entry.dependencies.runtime.package_name == "notify-sdk"
        assert entry.dependencies.peer_specs()[0].connector_id == "core.httpRequest"
        assert entry.conflict_rules.resolution_strategy == ResolutionStrategy.PREFER_STABLE
        assert entry.conflict_rules.incompatible_specs()[0].version_range == "<2.0.0"

    def test_invalid_version_rejected(self):
        with pytest.raises(ValidationError):
            ConnectorRegistryEntry(id="a", version="1.0")

    def test_invalid_peer_rejected(self):
        with pytest.raises(ValidationError):
            ConnectorRegistryEntry.model_validate(
                {"id": "a", "version": "1.0.0", "dependencies": {"peer": ["b@>=nope"]}}
            )

    def test_entries_are_frozen(self, entry):
        e = entry("a", "1.0.0")
        with pytest.raises(ValidationError):
            e.version = "2.0.0"


class TestDependencySpec:

    def test_parse_with_range(self):
        spec = DependencySpec.parse("svc.sendNotification@^1.0.0")
        assert spec.connector_id == "svc.sendNotification"
        assert spec.range.contains("1.4.0")
        assert str(spec) == "svc.sendNotification@^1.0.0"

    def test_range_defaults_to_any(self):
        assert DependencySpec.parse("core.noOp").version_range == "*"
        assert DependencySpec.parse("core.noOp@").version_range == "*"

    @pytest.mark.parametrize("text", ["", "@^1.0.0", "a@^x.y"])
    def test_invalid_specs(self, text):
        with pytest.raises(ValueError):
            DependencySpec.parse(text)


class TestRegistrySnapshot:
    """Test read-only registry views."""

    def test_versions_sorted_newest_first(self, notification_registry):
        snapshot = notification_registry.snapshot()
        versions = [e.version for e in snapshot.versions_of("svc.sendNotification")]
        assert versions == ["2.0.0-beta.1", "1.2.3", "1.1.0", "1.0.0"]

    def test_latest_skips_prereleases_by_default(self, notification_registry):
        snapshot = notification_registry.snapshot()
        assert snapshot.latest("svc.sendNotification").version == "1.2.3"
        assert snapshot.latest("svc.sendNotification", include_prerelease=True).version == "2.0.0-beta.1"
        assert snapshot.latest("missing") is None

    def test_get_matches_by_precedence(self, entry):
        snapshot = RegistrySnapshot([entry("a", "1.0.0+build.5")])
        assert snapshot.get("a", "1.0.0") is not None
        assert snapshot.get("a", "1.0.1") is None

    def test_duplicate_rejected(self, entry):
        with pytest.raises(DuplicateEntryError) as exc_info:
            RegistrySnapshot([entry("a", "1.0.0"), entry("a", "1.0.0")])
        assert exc_info.value.connector_id == "a"
        assert exc_info.value.version == "1.0.0"

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "registry.json"
        path.write_text(json.dumps({
            "registryVersion": "2.1.0",
            "connectors": [{"id": "a", "version": "1.0.0"}, {"id": "b", "version": "0.1.0"}],
        }))
        snapshot = RegistrySnapshot.from_file(path)
        assert snapshot.registry_version == "2.1.0"
        assert snapshot.connector_ids() == ["a", "b"]
        assert "a" in snapshot
        assert len(snapshot) == 2

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(
            "registryVersion: '1.0.0'\n"
            "connectors:\n"
            "  - id: a\n"
            "    version: 1.0.0\n"
            "    dependencies:\n"
            "      peer: ['b@^1.0.0']\n"
        )
        snapshot = RegistrySnapshot.from_file(path)
        assert snapshot.get("a", "1.0.0").dependencies.peer == ("b@^1.0.0",)

    def test_round_trip_document(self, notification_registry):
        snapshot = notification_registry.snapshot()
        rebuilt = RegistrySnapshot.from_dict(snapshot.to_dict())
        assert [e.key for e in rebuilt] == [e.key for e in snapshot]


class TestConnectorRegistry:
    """Test append-only publication."""

    def test_publish_bumps_generation(self, entry):
        registry = ConnectorRegistry([entry("a", "1.0.0")])
        before = registry.snapshot()

        after = registry.publish(entry("a", "1.1.0"))

        assert after.generation == before.generation + 1
        assert registry.generation == after.generation
        assert len(before) == 1
        assert len(after) == 2

    def test_publish_duplicate_keeps_snapshot(self, entry):
        registry = ConnectorRegistry([entry("a", "1.0.0")])
        snapshot = registry.snapshot()

        with pytest.raises(DuplicateEntryError):
            registry.publish(entry("a", "1.0.0"))

        assert registry.snapshot() is snapshot

    def test_concurrent_publication(self, entry):
        registry = ConnectorRegistry()

        def publish(minor):
            registry.publish(entry("a", f"1.{minor}.0"))

        threads = [threading.Thread(target=publish, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 20
        assert registry.generation == 20
