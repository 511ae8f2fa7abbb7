"""Request attempts and their single replay after a session refresh."""

from dataclasses import dataclass

import httpx

from pickup_client.shared.auth import bearer_authorization

# Key under which the retry marker travels in httpx request extensions
RETRIED_EXTENSION = "pickup_client.retried"


@dataclass(frozen=True)
class RequestAttempt:
    """One attempt of a logical request.

    `retried` is fixed when the attempt is created; a replay is a new attempt.
    """

    request: httpx.Request
    retried: bool = False

    @classmethod
    def from_request(cls, request: httpx.Request) -> "RequestAttempt":
        return cls(request=request, retried=bool(request.extensions.get(RETRIED_EXTENSION, False)))


def replay(attempt: RequestAttempt, access_token: str) -> RequestAttempt:
    """Build the replay of `attempt` carrying `access_token`.

    The new request matches the original except for the Authorization header
    and is marked as retried, so it can never enter the refresh path again.
    """
    if attempt.retried:
        raise ValueError("Request attempt has already been retried")

    original = attempt.request
    headers = original.headers.copy()
    headers["Authorization"] = bearer_authorization(access_token)

    request = httpx.Request(
        original.method,
        original.url,
        headers=headers,
        content=original.content,
        extensions={**original.extensions, RETRIED_EXTENSION: True},
    )
    return RequestAttempt(request=request, retried=True)
