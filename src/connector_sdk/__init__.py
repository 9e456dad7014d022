"""
Connector SDK - Uniform execution contract for connector adapters.

This package provides:
- ConnectorAdapter: Abstract base class with execute(context) -> AdapterResult
- AdapterContext / AdapterResult / ConnectorConfig: Runtime context and outcome
- ConnectorAdapterFactory: Connector type -> adapter registration table
- CredentialProvider: Credential lookup keyed by (credential_id, tenant_id)
- HttpClient: Timeout-bounded HTTP for adapters

All adapters execute synchronously.
"""

from .errors import (
    AdapterError,
    AdapterApiError,
    AdapterTimeoutError,
    ConnectorNotFoundError,
    AdapterConfigurationError,
)
from .context import ConnectorConfig, RunMetadata, AdapterContext, AdapterResult
from .adapter import ConnectorAdapter
from .credentials import CredentialProvider, InMemoryCredentialStore
from .factory import ConnectorAdapterFactory, AdapterPackManifest, get_default_factory
from .http import HttpClient, HttpResponse, auth_headers

__all__ = [
    # Errors
    "AdapterError",
    "AdapterApiError",
    "AdapterTimeoutError",
    "ConnectorNotFoundError",
    "AdapterConfigurationError",
    # Context
    "ConnectorConfig",
    "RunMetadata",
    "AdapterContext",
    "AdapterResult",
    # Base class
    "ConnectorAdapter",
    # Credentials
    "CredentialProvider",
    "InMemoryCredentialStore",
    # Factory
    "ConnectorAdapterFactory",
    "AdapterPackManifest",
    "get_default_factory",
    # HTTP
    "HttpClient",
    "HttpResponse",
    "auth_headers",
]
