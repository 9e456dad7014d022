"""
Adapter errors.

Adapters raise AdapterError (or a subclass) for node-level failures; the
engine records them on the node result. ConnectorNotFoundError and
AdapterConfigurationError are configuration-time errors raised by the
factory.
"""

from __future__ import annotations

from typing import Optional


class AdapterError(Exception):
    """Error during an adapter operation."""

    def __init__(self, message: str, adapter_type: Optional[str] = None) -> None:
        self.message = message
        self.adapter_type = adapter_type
        super().__init__(message)


class AdapterApiError(AdapterError):
    """Error from an external API call."""

    def __init__(
        self,
        message: str,
        adapter_type: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ) -> None:
        super().__init__(message, adapter_type)
        self.status_code = status_code
        self.response_body = response_body
        self.url = url
        self.method = method


class AdapterTimeoutError(AdapterError):
    """An adapter call ran past its deadline."""

    def __init__(
        self,
        message: str,
        timeout: float,
        url: Optional[str] = None,
        adapter_type: Optional[str] = None,
    ) -> None:
        super().__init__(message, adapter_type)
        self.timeout = timeout
        self.url = url


class ConnectorNotFoundError(LookupError):
    """No adapter is registered for a connector type."""

    def __init__(self, connector_type: str) -> None:
        self.connector_type = connector_type
        super().__init__(f"No adapter registered for connector type '{connector_type}'")


class AdapterConfigurationError(Exception):
    """The adapter table cannot be configured as requested."""


__all__ = [
    "AdapterError",
    "AdapterApiError",
    "AdapterTimeoutError",
    "ConnectorNotFoundError",
    "AdapterConfigurationError",
]
