"""
Error taxonomy for the authenticated client.

Responses are classified once, by status code and by whether the request
attempt has already been replayed, and surfaced as one of the exceptions below.
Transport failures (httpx.TransportError) are not wrapped.
"""

from enum import Enum, auto

import httpx


class ClientError(Exception):
    """Base exception for errors surfaced by the pickup client."""

    pass


class ResponseError(ClientError):
    """A classified error carrying the HTTP response that caused it."""

    def __init__(self, message: str, response: httpx.Response | None = None):
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> int | None:
        return self.response.status_code if self.response is not None else None


class RateLimitedError(ResponseError):
    """HTTP 429. Never triggers a session refresh."""

    pass


class UnauthorizedError(ResponseError):
    """HTTP 401 that cannot be recovered by a refresh."""

    pass


class SessionExpiredError(UnauthorizedError):
    """The session refresh failed or there was no refresh token to use."""

    pass


class TokenRefreshError(ClientError):
    """The refresh endpoint rejected the exchange or returned an invalid pair."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ApiStatusError(ResponseError):
    """Any other 4xx/5xx response, surfaced without local recovery."""

    @property
    def message(self) -> str | None:
        """The backend's `message` field, when the body is a JSON object carrying one."""
        if self.response is None:
            return None
        try:
            data = self.response.json()
        except ValueError:
            return None
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return data["message"]
        return None


class ResponseDisposition(Enum):
    """What the client does with a response."""

    PASS = auto()
    RATE_LIMITED = auto()
    REFRESH = auto()
    UNAUTHORIZED = auto()
    FAILURE = auto()


def classify_response(status_code: int, retried: bool) -> ResponseDisposition:
    """Map a response status to its disposition.

    429 is checked before anything else so that a rate-limited response never
    reaches the refresh path, whatever the retry marker says.
    """
    if status_code == 429:
        return ResponseDisposition.RATE_LIMITED
    if status_code == 401:
        return ResponseDisposition.UNAUTHORIZED if retried else ResponseDisposition.REFRESH
    if status_code >= 400:
        return ResponseDisposition.FAILURE
    return ResponseDisposition.PASS
