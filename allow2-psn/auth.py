"""
NPSSO based token handling for the PlayStation Network.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from const import (
    AUTH_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOKEN_SAFETY_MARGIN,
    GRANT_NPSSO,
    GRANT_REFRESH,
    OAUTH_SCOPE,
    TOKEN_ENDPOINT,
)
from errors import AuthenticationError
from requests import RequestException, Session

_LOG = logging.getLogger(__name__)


class TokenState(Enum):
    """Position of the token manager in its authentication lifecycle."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"
    REFRESH_FAILED = "refresh_failed"


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh token returned by the PSN token endpoint."""

    access_token: str
    refresh_token: str
    expires_at: float
    """UNIX timestamp after which the access token is no longer accepted."""

    @classmethod
    def from_payload(cls, payload: dict[str, Any], now: float) -> "TokenPair":
        """Create a token pair from a token endpoint response body."""
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise AuthenticationError("Token response missing access_token")
        try:
            expires_in = float(payload.get("expires_in", 0))
        except (TypeError, ValueError) as ex:
            raise AuthenticationError("Token response has invalid expires_in") from ex
        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or "",
            expires_at=now + expires_in,
        )

    def is_expiring(self, margin: float, now: float) -> bool:
        """Whether the access token expires within ``margin`` seconds."""
        return now + margin >= self.expires_at


class TokenManager:
    """
    Owns the NPSSO credential and the access/refresh token pair derived from it.

    The token pair is only ever replaced as a whole, so readers never observe a
    mix of an old access token and a new refresh token.

    :raises AuthenticationError: If the NPSSO token is missing, expired or rejected.
    """

    def __init__(
        self,
        credential: str | None,
        session: Session,
        *,
        safety_margin: float = DEFAULT_TOKEN_SAFETY_MARGIN,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the token manager with an NPSSO credential."""
        self._credential = credential or ""
        self._session = session
        self._safety_margin = safety_margin
        self._timeout = timeout
        self._clock = clock
        self._tokens: TokenPair | None = None
        self._state = TokenState.UNAUTHENTICATED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TokenState:
        """Return the current lifecycle state."""
        if (
            self._state == TokenState.AUTHENTICATED
            and self._tokens
            and self._tokens.is_expiring(self._safety_margin, self._clock())
        ):
            return TokenState.EXPIRING
        return self._state

    @property
    def tokens(self) -> TokenPair | None:
        """Return the current token pair, if any."""
        return self._tokens

    def authorization_header(self) -> dict[str, str]:
        """Return the bearer header for the current access token."""
        if not self._tokens:
            return {}
        return {"Authorization": f"Bearer {self._tokens.access_token}"}

    def clear(self) -> None:
        """Forget the current token pair."""
        self._tokens = None
        self._state = TokenState.UNAUTHENTICATED

    async def ensure_valid(self) -> None:
        """
        Make sure a usable access token is available.

        Authenticates when no token exists and refreshes when the token expires
        within the safety margin. A failed refresh falls back to a single full
        authentication.

        :raises AuthenticationError: If no usable token could be obtained.
        """
        if not self._credential:
            raise AuthenticationError("NPSSO token is required for authentication")

        async with self._lock:
            if not self._tokens:
                await self.authenticate()
                return

            if not self._tokens.is_expiring(self._safety_margin, self._clock()):
                return

            try:
                await self.refresh()
            except AuthenticationError as ex:
                _LOG.warning("Token refresh failed, re-authenticating: %s", ex)
                self._state = TokenState.REFRESH_FAILED
                await self.authenticate()

    async def authenticate(self) -> None:
        """
        Exchange the NPSSO credential for a new token pair.

        :raises AuthenticationError: If the credential is missing or rejected.
        """
        if not self._credential:
            raise AuthenticationError("NPSSO token is required for authentication")

        _LOG.debug("Authenticating with PSN")
        try:
            self._tokens = await self._exchange(
                {"npsso": self._credential, "grant_type": GRANT_NPSSO}
            )
        except AuthenticationError:
            self.clear()
            raise
        self._state = TokenState.AUTHENTICATED
        _LOG.info("PSN authentication successful")

    async def refresh(self) -> None:
        """
        Exchange the stored refresh token for a new token pair.

        The stored pair is left untouched when the refresh fails.

        :raises AuthenticationError: If there is no refresh token or it is rejected.
        """
        if not self._tokens or not self._tokens.refresh_token:
            raise AuthenticationError("No refresh token available")

        _LOG.debug("Refreshing PSN access token")
        self._state = TokenState.REFRESHING
        try:
            tokens = await self._exchange(
                {
                    "refresh_token": self._tokens.refresh_token,
                    "grant_type": GRANT_REFRESH,
                }
            )
        except AuthenticationError:
            self._state = TokenState.REFRESH_FAILED
            raise
        self._tokens = tokens
        self._state = TokenState.AUTHENTICATED
        _LOG.debug("PSN access token refreshed")

    async def _exchange(self, data: dict[str, str]) -> TokenPair:
        """Post a grant to the token endpoint and parse the response."""
        data = {**data, "scope": OAUTH_SCOPE}
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, self._post_token, data)
        except RequestException as ex:
            raise AuthenticationError(f"PSN token request failed: {ex}") from ex

        if not response.ok:
            raise AuthenticationError(
                f"PSN token request rejected with status {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as ex:
            raise AuthenticationError("PSN token response is not JSON") from ex
        return TokenPair.from_payload(payload, self._clock())

    def _post_token(self, data: dict[str, str]):
        return self._session.post(
            f"{AUTH_BASE_URL}{TOKEN_ENDPOINT}",
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self._timeout,
        )
