"""
Token Store: the single source of truth for the current session.

Holds the access/refresh pair and the session-expired flag. The pair is an
immutable TokenPair swapped as one reference, so readers only ever see a whole
pair or no pair. Persistence goes through a TokenStorage backend after the
in-memory swap.
"""

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import anyio
from pydantic import ValidationError

from pickup_client.shared.auth import TokenPair

logger = logging.getLogger(__name__)

SessionListener = Callable[[bool], None]


class TokenStorage(Protocol):
    """Protocol for token storage implementations."""

    async def get_tokens(self) -> TokenPair | None:
        """Get stored tokens."""
        ...

    async def set_tokens(self, tokens: TokenPair) -> None:
        """Store tokens."""
        ...

    async def clear_tokens(self) -> None:
        """Remove stored tokens."""
        ...


class InMemoryTokenStorage:
    """Token storage that lives for the process lifetime only."""

    def __init__(self, tokens: TokenPair | None = None):
        self._tokens = tokens

    async def get_tokens(self) -> TokenPair | None:
        return self._tokens

    async def set_tokens(self, tokens: TokenPair) -> None:
        self._tokens = tokens

    async def clear_tokens(self) -> None:
        self._tokens = None


class FileTokenStorage:
    """Persists the token pair as JSON in a file readable by the owner only."""

    def __init__(self, token_file: Path):
        self.token_file = anyio.Path(token_file)

    async def get_tokens(self) -> TokenPair | None:
        if not await self.token_file.exists():
            logger.debug(f"No token file at {self.token_file}")
            return None

        try:
            content = await self.token_file.read_text()
            return TokenPair.model_validate_json(content)
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable token file {self.token_file}: {e}")
            return None

    async def set_tokens(self, tokens: TokenPair) -> None:
        await self.token_file.parent.mkdir(parents=True, exist_ok=True)
        await self.token_file.write_text(json.dumps(tokens.model_dump(by_alias=True), indent=2))
        await self.token_file.chmod(0o600)
        logger.debug(f"Saved tokens to {self.token_file}")

    async def clear_tokens(self) -> None:
        await self.token_file.unlink(missing_ok=True)
        logger.debug(f"Removed token file {self.token_file}")


class TokenStore:
    """Current token pair plus the session-expired flag."""

    def __init__(self, storage: TokenStorage | None = None):
        self.storage: TokenStorage = storage if storage is not None else InMemoryTokenStorage()
        self._tokens: TokenPair | None = None
        self._session_expired = False
        self._listeners: list[SessionListener] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Load the persisted pair, if any. Safe to call more than once."""
        if self._initialized:
            return
        self._tokens = await self.storage.get_tokens()
        self._initialized = True
        logger.debug(f"Token store initialized ({'with' if self._tokens else 'without'} tokens)")

    @property
    def tokens(self) -> TokenPair | None:
        """Snapshot of the current pair."""
        return self._tokens

    @property
    def access_token(self) -> str | None:
        return self._tokens.access_token if self._tokens else None

    @property
    def refresh_token(self) -> str | None:
        return self._tokens.refresh_token if self._tokens else None

    @property
    def is_session_expired(self) -> bool:
        return self._session_expired

    async def set_tokens(self, tokens: TokenPair) -> None:
        """Replace both tokens at once. Storing a pair also ends an expired session."""
        self._tokens = tokens
        self._set_session_expired(False)
        await self.storage.set_tokens(tokens)

    async def clear(self) -> None:
        """Drop both tokens and mark the session as expired."""
        self._tokens = None
        self._set_session_expired(True)
        await self.storage.clear_tokens()

    def acknowledge_session_expired(self) -> None:
        """Clear the flag without restoring any tokens."""
        self._set_session_expired(False)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call `listener` with the new flag value on every session-expired change.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session_expired(self, expired: bool) -> None:
        if self._session_expired == expired:
            return
        self._session_expired = expired
        if expired:
            logger.warning("Session expired, sign in again to continue")
        for listener in list(self._listeners):
            try:
                listener(expired)
            except Exception:
                logger.exception("Session listener failed")
