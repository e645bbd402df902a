from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..errors import AuthError
from ..schemas import Token
from .token_store import TokenStore, build_token_store

logger = logging.getLogger("photo_mirror.auth.oauth")

# Refresh once less than this many seconds of validity remain.
EXPIRY_MARGIN_SECONDS = 60
DEFAULT_EXPIRES_IN = 3600


class OAuthTokenProvider:
    """Refresh-token grant against the Google token endpoint.

    Tokens are read from and written back to a ``TokenStore``. The initial
    token pair is seeded with ``store_tokens``; interactive consent happens
    elsewhere.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.store = store if store is not None else build_token_store(settings)
        self.client = httpx.AsyncClient(
            timeout=settings.REMOTE_TIMEOUT_SECONDS, transport=transport
        )
        self._token: Optional[Token] = None

    async def aclose(self) -> None:
        await self.client.aclose()

    def store_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: int = DEFAULT_EXPIRES_IN,
    ) -> Token:
        token = Token(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        self.store.save(token)
        self._token = token
        logger.info({"event": "auth.tokens.stored", "has_refresh": refresh_token is not None})
        return token

    def _current(self) -> Token:
        if self._token is None:
            self._token = self.store.load()
        if self._token is None:
            raise AuthError("Not authenticated: no stored token")
        return self._token

    async def get_valid_access_token(self) -> Token:
        token = self._current()
        if token.expires_within(EXPIRY_MARGIN_SECONDS):
            logger.debug({"event": "auth.token.expiring"})
            return await self.force_refresh()
        return token

    async def force_refresh(self) -> Token:
        current = self._current()
        if not current.refresh_token:
            raise AuthError("No refresh token stored")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_id": self.settings.GOOGLE_CLIENT_ID,
            "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
        }
        try:
            response = await self.client.post(self.settings.TOKEN_URL, data=form)
        except httpx.HTTPError as exc:
            logger.warning({"event": "auth.refresh.transport_error", "error": str(exc)})
            raise AuthError(f"Token refresh failed: {exc}") from exc

        payload = self._payload(response)
        if response.is_error or "access_token" not in payload:
            message = payload.get("error_description") or payload.get("error") or response.reason_phrase
            logger.error(
                {"event": "auth.refresh.rejected", "status": response.status_code, "message": message}
            )
            raise AuthError(f"Token refresh rejected: {message}")

        token = Token(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or current.refresh_token,
            expires_at=datetime.now(timezone.utc)
            + timedelta(seconds=int(payload.get("expires_in", DEFAULT_EXPIRES_IN))),
        )
        self.store.save(token)
        self._token = token
        logger.info({"event": "auth.refresh.success", "expires_at": token.expires_at.isoformat()})
        return token

    @staticmethod
    def _payload(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
