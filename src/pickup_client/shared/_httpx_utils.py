"""Utilities for creating standardized httpx AsyncClient instances."""

from typing import Any, Protocol

import httpx

__all__ = ["create_http_client", "HttpClientFactory"]

DEFAULT_TIMEOUT = 30.0


class HttpClientFactory(Protocol):
    def __call__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float | httpx.Timeout | None = None,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> httpx.AsyncClient: ...


def create_http_client(
    base_url: str = "",
    headers: dict[str, str] | None = None,
    timeout: float | httpx.Timeout | None = None,
    auth: httpx.Auth | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create a standardized httpx AsyncClient with the project defaults.

    This function provides common defaults used throughout the client:
    - follow_redirects=True (always enabled)
    - Default timeout of 30 seconds if not specified

    Args:
        base_url: Base URL the request paths are resolved against.
        headers: Optional headers to include with all requests.
        timeout: Request timeout, as seconds or an httpx.Timeout object.
            Defaults to 30 seconds if not specified.
        auth: Optional authentication handler.
        transport: Optional transport; tests pass an httpx.MockTransport here.

    Returns:
        Configured httpx.AsyncClient instance.
    """
    kwargs: dict[str, Any] = {
        "base_url": base_url,
        "follow_redirects": True,
    }

    if timeout is None:
        kwargs["timeout"] = httpx.Timeout(DEFAULT_TIMEOUT)
    elif isinstance(timeout, httpx.Timeout):
        kwargs["timeout"] = timeout
    else:
        kwargs["timeout"] = httpx.Timeout(timeout)

    if headers is not None:
        kwargs["headers"] = headers

    if auth is not None:
        kwargs["auth"] = auth

    if transport is not None:
        kwargs["transport"] = transport

    return httpx.AsyncClient(**kwargs)
