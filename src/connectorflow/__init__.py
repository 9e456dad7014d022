"""Connector dependency resolution and DAG workflow execution."""

__version__ = "0.1.0"
