from pickup_client.client.errors import (
    ApiStatusError,
    ClientError,
    RateLimitedError,
    SessionExpiredError,
    TokenRefreshError,
    UnauthorizedError,
)
from pickup_client.client.http import AuthenticatedClient, SessionAuth
from pickup_client.client.refresh import RefreshCoordinator, RefreshState, TokenRefresher
from pickup_client.client.retry import RequestAttempt, replay
from pickup_client.client.token_store import FileTokenStorage, InMemoryTokenStorage, TokenStorage, TokenStore

__all__ = [
    "ApiStatusError",
    "AuthenticatedClient",
    "ClientError",
    "FileTokenStorage",
    "InMemoryTokenStorage",
    "RateLimitedError",
    "RefreshCoordinator",
    "RefreshState",
    "RequestAttempt",
    "SessionAuth",
    "SessionExpiredError",
    "TokenRefreshError",
    "TokenRefresher",
    "TokenStorage",
    "TokenStore",
    "UnauthorizedError",
    "replay",
]
