"""
Credential lookup.

The core never stores or decrypts secrets; it asks a CredentialProvider for
the secret bound to ``(credential_id, tenant_id)`` when an adapter needs it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable


logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialProvider(Protocol):
    """Resolves a credential id to its secret for one tenant."""

    def get_secret(self, credential_id: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        ...


class InMemoryCredentialStore:
    """
    Thread-safe dict-backed provider, for tests and local runs.

    Secrets are scoped per tenant; a lookup for another tenant misses.
    """

    def __init__(self) -> None:
        self._secrets: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, credential_id: str, secret: Dict[str, Any], tenant_id: str = "") -> None:
        with self._lock:
            self._secrets[(credential_id, tenant_id)] = dict(secret)

    def remove(self, credential_id: str, tenant_id: str = "") -> bool:
        with self._lock:
            return self._secrets.pop((credential_id, tenant_id), None) is not None

    def get_secret(self, credential_id: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            secret = self._secrets.get((credential_id, tenant_id))
        if secret is None:
            logger.debug(f"Credential {credential_id} not found for tenant {tenant_id!r}")
            return None
        return dict(secret)

    def __len__(self) -> int:
        return len(self._secrets)


__all__ = [
    "CredentialProvider",
    "InMemoryCredentialStore",
]
