"""
Authenticated HTTP client for the pickup API.

SessionAuth plugs into httpx's auth flow: it attaches the current access token
to every request and turns a first 401 into a coordinated refresh followed by a
single replay. AuthenticatedClient wraps an httpx.AsyncClient using that auth
and classifies whatever comes back into the client's error taxonomy.
"""

import logging
from collections.abc import AsyncGenerator, Generator
from types import TracebackType
from typing import Any

import httpx

from pickup_client.client.errors import (
    ApiStatusError,
    RateLimitedError,
    ResponseDisposition,
    UnauthorizedError,
    classify_response,
)
from pickup_client.client.refresh import RefreshCoordinator, TokenRefresher
from pickup_client.client.retry import RETRIED_EXTENSION, RequestAttempt, replay
from pickup_client.client.token_store import FileTokenStorage, InMemoryTokenStorage, TokenStore
from pickup_client.settings import ClientSettings
from pickup_client.shared._httpx_utils import HttpClientFactory, create_http_client
from pickup_client.shared.auth import bearer_authorization, parse_bearer

logger = logging.getLogger(__name__)


class SessionAuth(httpx.Auth):
    """
    Bearer authentication for httpx with single-flight session refresh.

    Only 401 responses are acted upon. Everything else, 429 included, is handed
    back to the caller untouched.
    A 401 on the replay clears the store, which marks the session expired.
    """

    requires_request_body = True
    requires_response_body = True

    def __init__(self, store: TokenStore, coordinator: RefreshCoordinator):
        self.store = store
        self.coordinator = coordinator

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("SessionAuth can only be used with httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        """HTTPX auth flow integration."""
        await self.store.initialize()

        if access_token := self.store.access_token:
            request.headers["Authorization"] = bearer_authorization(access_token)
        attempt = RequestAttempt.from_request(request)

        response = yield attempt.request

        disposition = classify_response(response.status_code, attempt.retried)
        if disposition is ResponseDisposition.UNAUTHORIZED:
            await self.store.clear()
            raise UnauthorizedError(f"Unauthorized: {request.method} {request.url}", response)
        if disposition is not ResponseDisposition.REFRESH:
            return

        sent_token = parse_bearer(attempt.request.headers.get("Authorization"))
        current_token = self.store.access_token
        if current_token and sent_token and current_token != sent_token:
            # A first 401 normally goes to the coordinator; this one was sent with a
            # token a completed refresh already replaced, so it only needs its replay
            logger.debug(f"401 with a superseded token for {request.method} {request.url}, replaying")
            access_token = current_token
        else:
            logger.debug(f"401 for {request.method} {request.url}, refreshing session")
            access_token = await self.coordinator.obtain_token()

        attempt = replay(attempt, access_token)
        response = yield attempt.request

        if classify_response(response.status_code, attempt.retried) is ResponseDisposition.UNAUTHORIZED:
            logger.warning(f"Replayed request still unauthorized: {request.method} {request.url}")
            await self.store.clear()
            raise UnauthorizedError(f"Unauthorized after session refresh: {request.method} {request.url}", response)


class AuthenticatedClient:
    """
    Sends requests to the pickup API on behalf of the signed-in user.

    Has the same input/output contract as httpx.AsyncClient.request, except
    that failures are raised as classified errors:
    RateLimitedError (429), UnauthorizedError / SessionExpiredError (401 that
    could not be recovered) and ApiStatusError (other 4xx/5xx). Transport
    errors propagate unmodified.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        store: TokenStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client_factory: HttpClientFactory = create_http_client,
    ):
        self.settings = settings if settings is not None else ClientSettings()

        if store is None:
            if self.settings.token_file is not None:
                store = TokenStore(FileTokenStorage(self.settings.token_file))
            else:
                store = TokenStore(InMemoryTokenStorage())
        self.store = store

        # The refresh call goes through a client without SessionAuth
        self._public_client = http_client_factory(
            base_url=self.settings.api_url,
            timeout=self.settings.timeout,
            transport=transport,
        )
        self.refresher = TokenRefresher(self._public_client, self.settings.refresh_url)
        self.coordinator = RefreshCoordinator(self.store, self.refresher)
        self.auth = SessionAuth(self.store, self.coordinator)
        self._http_client = http_client_factory(
            base_url=self.settings.api_url,
            timeout=self.settings.timeout,
            auth=self.auth,
            transport=transport,
        )

    async def __aenter__(self) -> "AuthenticatedClient":
        await self.store.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http_client.aclose()
        await self._public_client.aclose()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request and return the response if it succeeded."""
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"Network error during {method} {url}: {e}")
            raise
        return self._check_response(response)

    async def send(self, request: httpx.Request) -> httpx.Response:
        try:
            response = await self._http_client.send(request)
        except httpx.TransportError as e:
            logger.error(f"Network error during {request.method} {request.url}: {e}")
            raise
        return self._check_response(response)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    def _check_response(self, response: httpx.Response) -> httpx.Response:
        request = response.request
        retried = bool(request.extensions.get(RETRIED_EXTENSION, False))
        disposition = classify_response(response.status_code, retried)

        if disposition is ResponseDisposition.PASS:
            return response

        if disposition is ResponseDisposition.RATE_LIMITED:
            logger.warning(f"Rate limited: {request.method} {request.url}")
            raise RateLimitedError(f"Too many requests: {request.method} {request.url}", response)

        if disposition in (ResponseDisposition.REFRESH, ResponseDisposition.UNAUTHORIZED):
            # Only reachable when the request bypassed SessionAuth (auth=None)
            raise UnauthorizedError(f"Unauthorized: {request.method} {request.url}", response)

        error = ApiStatusError(
            f"Request failed with status {response.status_code}: {request.method} {request.url}", response
        )
        if response.status_code >= 500:
            logger.error(f"Server error {response.status_code} for {request.method} {request.url}")
        else:
            logger.error(
                f"Request error {response.status_code} for {request.method} {request.url}: "
                f"{error.message or 'no details'}"
            )
        raise error
