from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import AuthError, TransientNetworkError
from ..remote.interfaces import RemoteClient, TokenProvider
from ..schemas import Token

logger = logging.getLogger("photo_mirror.sync.tokens")

T = TypeVar("T")

# Tokens closer than this to expiry are not handed out from the cache.
TOKEN_MARGIN_SECONDS = 60


class TokenCoordinator:
    """Single-flight access to the token provider.

    Concurrent callers that need a token while a fetch or refresh is in
    flight await that call instead of starting their own.
    """

    def __init__(self, provider: TokenProvider):
        self.provider = provider
        self._token: Optional[Token] = None
        self._inflight: Optional["asyncio.Task[Token]"] = None
        self._inflight_forced = False
        self.refresh_count = 0

    @property
    def token(self) -> Optional[Token]:
        return self._token

    async def get_token(self) -> Token:
        if self._token is not None and not self._token.expires_within(TOKEN_MARGIN_SECONDS):
            return self._token
        return await self._single_flight(forced=False)

    async def refresh(self) -> Token:
        """Force a refresh, joining one already in flight."""
        if self._inflight is not None and not self._inflight_forced:
            # A plain fetch may hand back the token that was just rejected.
            await asyncio.shield(self._inflight)
        return await self._single_flight(forced=True)

    async def _single_flight(self, forced: bool) -> Token:
        if self._inflight is None:
            self._inflight_forced = forced
            self._inflight = asyncio.ensure_future(self._fetch(forced))
        return await asyncio.shield(self._inflight)

    async def _fetch(self, forced: bool) -> Token:
        try:
            if forced:
                self.refresh_count += 1
                logger.info({"event": "auth.token.refresh", "count": self.refresh_count})
                token = await self.provider.force_refresh()
            else:
                token = await self.provider.get_valid_access_token()
            self._token = token
            return token
        finally:
            self._inflight = None
            self._inflight_forced = False


async def _bounded(call: Awaitable[T], timeout: float) -> T:
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransientNetworkError(f"Remote call exceeded {timeout:g}s") from exc


async def call_with_token(
    tokens: TokenCoordinator,
    remote: RemoteClient,
    make_call: Callable[[], Awaitable[T]],
    timeout: float,
) -> T:
    """Run a remote call with a valid token and a bounded timeout.

    An ``AuthError`` from the call triggers exactly one forced refresh and
    one retry; a second ``AuthError`` propagates.
    """
    remote.set_access_token(await tokens.get_token())
    try:
        return await _bounded(make_call(), timeout)
    except AuthError:
        logger.warning({"event": "auth.token.rejected"})
    remote.set_access_token(await tokens.refresh())
    return await _bounded(make_call(), timeout)
