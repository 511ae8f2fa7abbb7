"""
Single-flight session refresh.

The RefreshCoordinator cycles between IDLE and REFRESHING. The first caller
that needs a fresh access token drives the refresh call; callers arriving while
it is in flight are parked as waiters and receive the same outcome, so one
refresh call is made per cycle however many 401s arrive concurrently.
"""

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum, auto

import anyio
import httpx
from pydantic import ValidationError

from pickup_client.client.errors import SessionExpiredError, TokenRefreshError
from pickup_client.client.token_store import TokenStore
from pickup_client.shared.auth import RefreshTokensRequest, TokenPair

logger = logging.getLogger(__name__)

RefreshHandler = Callable[[TokenPair], Awaitable[TokenPair]]


class RefreshState(Enum):
    """Refresh coordinator states."""

    IDLE = auto()
    REFRESHING = auto()


class PendingWaiter:
    """A caller parked until the current refresh cycle settles."""

    def __init__(self) -> None:
        self._event = anyio.Event()
        self._access_token: str | None = None
        self._error: Exception | None = None

    def resolve(self, access_token: str) -> None:
        self._access_token = access_token
        self._event.set()

    def reject(self, error: Exception) -> None:
        self._error = error
        self._event.set()

    async def wait(self) -> str:
        """Wait for the cycle outcome: the new access token, or the failure raised."""
        await self._event.wait()
        if self._error is not None:
            raise self._error
        assert self._access_token is not None
        return self._access_token


class RefreshCoordinator:
    """
    Guarantees at most one in-flight refresh call for a TokenStore.

    Construct one per TokenStore. The coordinator writes to the store only when
    a cycle settles: the new pair on success, a cleared store on failure.
    """

    def __init__(self, store: TokenStore, refresh_handler: RefreshHandler):
        self.store = store
        self.refresh_handler = refresh_handler
        self._state = RefreshState.IDLE
        self._waiters: deque[PendingWaiter] = deque()

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending(self) -> int:
        """Number of callers waiting on the current cycle, driver included."""
        return len(self._waiters)

    async def obtain_token(self) -> str:
        """Get an access token from a refresh cycle, joining the one in flight if any.

        Raises:
            SessionExpiredError: the refresh failed or no refresh token was available.
        """
        waiter = PendingWaiter()
        self._waiters.append(waiter)

        if self._state is RefreshState.REFRESHING:
            logger.debug(f"Refresh in progress, parking caller ({len(self._waiters)} waiting)")
            return await waiter.wait()

        self._state = RefreshState.REFRESHING
        logger.debug("Transitioning from IDLE to REFRESHING")

        # Runs to completion even if the driving caller is cancelled meanwhile
        with anyio.CancelScope(shield=True):
            await self._drive()

        return await waiter.wait()

    async def _drive(self) -> None:
        tokens = self.store.tokens
        new_tokens: TokenPair | None = None
        error: SessionExpiredError | None = None

        try:
            if tokens is None:
                logger.warning("No refresh token available, cannot refresh session")
                error = SessionExpiredError("No refresh token available")
            else:
                try:
                    new_tokens = await self.refresh_handler(tokens)
                except Exception as e:
                    logger.warning(f"Session refresh failed: {e}")
                    error = SessionExpiredError(f"Session refresh failed: {e}")
                    error.__cause__ = e

            if new_tokens is not None:
                await self.store.set_tokens(new_tokens)
                logger.info("Session refreshed")
            else:
                await self.store.clear()
        finally:
            if new_tokens is not None:
                self._settle(access_token=new_tokens.access_token)
            else:
                self._settle(error=error or SessionExpiredError("Session refresh was interrupted"))

    def _settle(self, access_token: str | None = None, error: Exception | None = None) -> None:
        waiters, self._waiters = self._waiters, deque()
        self._state = RefreshState.IDLE
        logger.debug(f"Transitioning from REFRESHING to IDLE, releasing {len(waiters)} waiter(s)")

        for waiter in waiters:
            if access_token is not None:
                waiter.resolve(access_token)
            else:
                assert error is not None
                waiter.reject(error)


class TokenRefresher:
    """
    Calls the backend refresh endpoint.

    Uses an unauthenticated client: the refresh call must never go back through
    the session interception it serves.
    """

    def __init__(self, http_client: httpx.AsyncClient, refresh_url: str):
        self.http_client = http_client
        self.refresh_url = refresh_url

    async def __call__(self, tokens: TokenPair) -> TokenPair:
        body = RefreshTokensRequest.from_pair(tokens.access_token, tokens.refresh_token)

        try:
            response = await self.http_client.post(
                self.refresh_url,
                json=body.to_json_body(),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"HTTP error during token refresh: {e}") from e

        if not response.is_success:
            raise TokenRefreshError(
                f"Token refresh failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        try:
            return TokenPair.model_validate_json(response.content)
        except ValidationError as e:
            raise TokenRefreshError(f"Invalid refresh response: {e}", status_code=response.status_code) from e
