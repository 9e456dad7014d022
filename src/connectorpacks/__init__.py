"""Adapter packs bundled with connectorflow."""
