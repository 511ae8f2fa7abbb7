"""
Tests for the single-flight refresh coordinator and the refresh endpoint adapter.
"""

import json

import anyio
import httpx
import pytest

from pickup_client.client.errors import SessionExpiredError, TokenRefreshError
from pickup_client.client.refresh import RefreshCoordinator, RefreshState, TokenRefresher
from pickup_client.client.token_store import InMemoryTokenStorage, TokenStore
from pickup_client.shared.auth import TokenPair

OLD_PAIR = TokenPair(access_token="A1", refresh_token="R1")
NEW_PAIR = TokenPair(access_token="A2", refresh_token="R2")


class GatedRefresh:
    """Refresh handler that blocks until released, counting calls."""

    def __init__(self, result: TokenPair = NEW_PAIR, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[TokenPair] = []
        self.started = anyio.Event()
        self.release = anyio.Event()

    async def __call__(self, tokens: TokenPair) -> TokenPair:
        self.calls.append(tokens)
        self.started.set()
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


async def wait_for_waiters(coordinator: RefreshCoordinator, count: int) -> None:
    with anyio.fail_after(5):
        while coordinator.pending < count:
            await anyio.sleep(0)


@pytest.fixture
async def store():
    store = TokenStore(InMemoryTokenStorage())
    await store.set_tokens(OLD_PAIR)
    return store


class TestRefreshCoordinator:
    """Test the IDLE/REFRESHING cycle."""

    @pytest.mark.anyio
    async def test_starts_idle(self, store):
        coordinator = RefreshCoordinator(store, GatedRefresh())
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.pending == 0

    @pytest.mark.anyio
    async def test_concurrent_callers_share_one_refresh(self, store):
        handler = GatedRefresh()
        coordinator = RefreshCoordinator(store, handler)
        results: list[str] = []

        async def caller():
            results.append(await coordinator.obtain_token())

        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(caller)
            await handler.started.wait()
            await wait_for_waiters(coordinator, 5)
            assert coordinator.state is RefreshState.REFRESHING
            handler.release.set()

        assert results == ["A2"] * 5
        assert handler.calls == [OLD_PAIR]
        assert store.tokens == NEW_PAIR
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.pending == 0

    @pytest.mark.anyio
    async def test_failed_refresh_rejects_every_waiter(self, store):
        boom = TokenRefreshError("Token refresh failed: 401", status_code=401)
        handler = GatedRefresh(error=boom)
        coordinator = RefreshCoordinator(store, handler)
        errors: list[Exception] = []

        async def caller():
            try:
                await coordinator.obtain_token()
            except SessionExpiredError as e:
                errors.append(e)

        async with anyio.create_task_group() as tg:
            for _ in range(3):
                tg.start_soon(caller)
            await handler.started.wait()
            await wait_for_waiters(coordinator, 3)
            handler.release.set()

        assert len(errors) == 3
        assert all(e is errors[0] for e in errors)
        assert errors[0].__cause__ is boom
        assert len(handler.calls) == 1
        assert store.tokens is None
        assert store.is_session_expired
        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.anyio
    async def test_missing_refresh_token_fails_fast(self):
        store = TokenStore(InMemoryTokenStorage())
        handler = GatedRefresh()
        coordinator = RefreshCoordinator(store, handler)

        with pytest.raises(SessionExpiredError, match="No refresh token"):
            await coordinator.obtain_token()

        assert handler.calls == []
        assert store.is_session_expired
        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.anyio
    async def test_waiters_released_in_registration_order(self, store):
        handler = GatedRefresh()
        coordinator = RefreshCoordinator(store, handler)
        order: list[int] = []

        async def caller(index: int):
            await coordinator.obtain_token()
            order.append(index)

        async with anyio.create_task_group() as tg:
            tg.start_soon(caller, 0)
            await handler.started.wait()
            for index in range(1, 4):
                tg.start_soon(caller, index)
                await wait_for_waiters(coordinator, index + 1)
            handler.release.set()

        assert sorted(order) == [0, 1, 2, 3]
        assert order[1:] == [1, 2, 3]

    @pytest.mark.anyio
    async def test_each_cycle_refreshes_once(self, store):
        third = TokenPair(access_token="A3", refresh_token="R3")
        pairs = iter([NEW_PAIR, third])
        calls: list[TokenPair] = []

        async def handler(tokens: TokenPair) -> TokenPair:
            calls.append(tokens)
            return next(pairs)

        coordinator = RefreshCoordinator(store, handler)

        assert await coordinator.obtain_token() == "A2"
        assert await coordinator.obtain_token() == "A3"
        assert calls == [OLD_PAIR, NEW_PAIR]
        assert store.tokens == third

    @pytest.mark.anyio
    async def test_cancelled_driver_does_not_cancel_refresh(self, store):
        handler = GatedRefresh()
        coordinator = RefreshCoordinator(store, handler)
        driver_scope = anyio.CancelScope()
        results: list[str] = []

        async def driver():
            with driver_scope:
                results.append(await coordinator.obtain_token())

        async def waiter():
            results.append(await coordinator.obtain_token())

        async with anyio.create_task_group() as tg:
            tg.start_soon(driver)
            await handler.started.wait()
            tg.start_soon(waiter)
            await wait_for_waiters(coordinator, 2)

            driver_scope.cancel()
            await anyio.sleep(0)
            assert coordinator.state is RefreshState.REFRESHING

            handler.release.set()

        assert results == ["A2"]
        assert len(handler.calls) == 1
        assert store.tokens == NEW_PAIR
        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.anyio
    async def test_abandoned_waiter_does_not_corrupt_queue(self, store):
        handler = GatedRefresh()
        coordinator = RefreshCoordinator(store, handler)
        waiter_scope = anyio.CancelScope()
        results: list[str] = []

        async def driver():
            results.append(await coordinator.obtain_token())

        async def abandoned():
            with waiter_scope:
                results.append(await coordinator.obtain_token())

        async with anyio.create_task_group() as tg:
            tg.start_soon(driver)
            await handler.started.wait()
            tg.start_soon(abandoned)
            await wait_for_waiters(coordinator, 2)

            waiter_scope.cancel()
            handler.release.set()

        assert results == ["A2"]
        assert coordinator.pending == 0
        assert coordinator.state is RefreshState.IDLE

        # The next cycle starts from a clean queue
        async def handler_again(tokens: TokenPair) -> TokenPair:
            return TokenPair(access_token="A3", refresh_token="R3")

        coordinator.refresh_handler = handler_again
        assert await coordinator.obtain_token() == "A3"


class TestTokenRefresher:
    """Test the refresh endpoint adapter."""

    @pytest.mark.anyio
    async def test_posts_both_tokens_and_parses_rotated_pair(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"accessToken": "A2", "refreshToken": "R2", "user": {"id": "1"}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            refresher = TokenRefresher(client, "https://api.example.com/auth/refresh")
            result = await refresher(OLD_PAIR)

        assert result == NEW_PAIR
        assert str(seen[0].url) == "https://api.example.com/auth/refresh"
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"accessToken": "A1", "refreshToken": "R1"}
        assert "Authorization" not in seen[0].headers

    @pytest.mark.anyio
    async def test_non_rotating_server_pair_is_stored_as_returned(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"accessToken": "A2", "refreshToken": "R1"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await TokenRefresher(client, "https://api.example.com/auth/refresh")(OLD_PAIR)

        assert result == TokenPair(access_token="A2", refresh_token="R1")

    @pytest.mark.anyio
    @pytest.mark.parametrize("status_code", [400, 401, 429, 500])
    async def test_non_success_is_refresh_failure(self, status_code):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json={"message": "nope"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TokenRefreshError) as exc_info:
                await TokenRefresher(client, "https://api.example.com/auth/refresh")(OLD_PAIR)

        assert exc_info.value.status_code == status_code

    @pytest.mark.anyio
    async def test_missing_refresh_token_in_response_is_refresh_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"accessToken": "A2"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TokenRefreshError, match="Invalid refresh response"):
                await TokenRefresher(client, "https://api.example.com/auth/refresh")(OLD_PAIR)

    @pytest.mark.anyio
    async def test_transport_error_is_refresh_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TokenRefreshError, match="HTTP error during token refresh"):
                await TokenRefresher(client, "https://api.example.com/auth/refresh")(OLD_PAIR)
