"""
HTTP helper for adapters.

Calls are bounded twice: by the client timeout and, when the client is bound
to an AdapterContext, by the time the node has left. A credential secret is
turned into auth headers with ``auth_headers``.

``requests`` failures surface as AdapterTimeoutError / AdapterApiError.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, Union, TYPE_CHECKING

import requests
from requests.exceptions import RequestException, Timeout

from .errors import AdapterApiError, AdapterTimeoutError

if TYPE_CHECKING:
    from .context import AdapterContext


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Error bodies are truncated before they go into exceptions and logs
MAX_ERROR_BODY = 1000

JSON_METHODS = ("POST", "PUT", "PATCH")


def auth_headers(secret: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """
    Headers for a credential secret.

    ``token`` becomes a bearer Authorization header; ``apiKey`` is sent in
    ``apiKeyHeader`` (``X-API-Key`` unless the secret names another).
    """
    if not secret:
        return {}
    headers: Dict[str, str] = {}
    if secret.get("token"):
        headers["Authorization"] = f"Bearer {secret['token']}"
    if secret.get("apiKey"):
        headers[secret.get("apiKeyHeader") or "X-API-Key"] = str(secret["apiKey"])
    return headers


class HttpResponse:
    """A ``requests.Response`` plus the request line and elapsed time."""

    def __init__(self, response: requests.Response, method: str, elapsed_ms: int = 0):
        self.raw = response
        self.method = method
        self.elapsed_ms = elapsed_ms

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def ok(self) -> bool:
        return self.raw.status_code < 400

    @property
    def url(self) -> str:
        return str(self.raw.url)

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self.raw.headers)

    def body(self) -> Any:
        """Decoded JSON for JSON responses, the text otherwise."""
        if "json" not in self.raw.headers.get("Content-Type", ""):
            return self.raw.text
        try:
            return self.raw.json()
        except ValueError:
            return self.raw.text

    def raise_for_status(self, adapter_type: Optional[str] = None) -> "HttpResponse":
        """Raise AdapterApiError for 4xx/5xx; returns self otherwise."""
        if self.ok:
            return self
        text = self.raw.text
        raise AdapterApiError(
            message=f"HTTP {self.status_code}: {self.raw.reason}",
            adapter_type=adapter_type,
            status_code=self.status_code,
            response_body=text[:MAX_ERROR_BODY] if text else None,
            url=self.url,
            method=self.method,
        )


class HttpClient:
    """
    Deadline-aware HTTP client.

    Usage:
        client = HttpClient(base_url=settings.notification_base_url,
                            headers=auth_headers(secret), context=context)
        client.post("/api/v1/notifications", json=payload).raise_for_status()
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        context: Optional["AdapterContext"] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers: Dict[str, str] = dict(headers or {})
        self.timeout = timeout
        self.context = context
        self.session = session

    def url_for(self, endpoint: str) -> str:
        if not self.base_url or endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def timeout_for(self, timeout: Optional[float] = None) -> float:
        """Requested timeout, capped by the node's remaining time."""
        limit = timeout or self.timeout
        if self.context is None:
            return limit
        self.context.check_deadline()
        remaining = self.context.remaining_time()
        return limit if remaining is None else min(limit, remaining)

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """
        Send a request. Non-2xx responses are returned, not raised.

        Raises:
            AdapterTimeoutError: The call (or the node) ran out of time
            AdapterApiError: The request could not be sent
        """
        method = method.upper()
        url = self.url_for(endpoint)
        limit = self.timeout_for(timeout)
        send = requests.request if self.session is None else self.session.request

        logger.debug(f"{method} {url} (timeout {limit:.1f}s)")
        started = time.monotonic()
        try:
            response = send(
                method=method,
                url=url,
                params=params,
                json=json,
                data=data,
                headers={**self.headers, **(headers or {})},
                timeout=limit,
            )
        except Timeout as e:
            raise AdapterTimeoutError(f"{method} {url} timed out after {limit:.1f}s", timeout=limit, url=url) from e
        except RequestException as e:
            raise AdapterApiError(f"Request failed: {e}", url=url, method=method) from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"{method} {url} -> {response.status_code} in {elapsed_ms}ms")
        return HttpResponse(response, method, elapsed_ms)

    def get(self, endpoint: str, **kwargs: Any) -> HttpResponse:
        return self.request("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs: Any) -> HttpResponse:
        return self.request("POST", endpoint, **kwargs)


__all__ = [
    "HttpClient",
    "HttpResponse",
    "auth_headers",
    "DEFAULT_TIMEOUT",
    "JSON_METHODS",
]
