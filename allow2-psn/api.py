"""
API Wrapper for the PlayStation Network family management endpoints.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from auth import TokenManager
from config import PlayStationConfig
from const import API_BASE_URL, FAMILY_API
from pipeline import RequestPipeline
from requests import Session

_LOG = logging.getLogger(__name__)


@dataclass
class ChildAccount:
    """Child member of the authenticated PSN family."""

    account_id: str
    display_name: str
    age: int | None
    restrictions: dict[str, Any] | None


@dataclass
class PlayTime:
    """Dataclass representing play time retrieved from the PlayStation Network api."""

    account_id: str
    today_minutes: int
    week_minutes: int
    currently_playing: bool
    current_game: str | None
    last_played: str | None


class PlayStationNetwork:
    """Helper Class to access the PSN family management api.

    Every call makes sure the access token is valid before it is queued on the
    rate limited request pipeline.

    :raises AuthenticationError: If npsso code is expired or is incorrect.
    :raises RequestError: If a PSN request fails.
    """

    def __init__(
        self,
        config: PlayStationConfig,
        *,
        session: Session | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize PlayStationNetwork with the plugin configuration."""
        self.session = session or Session()
        self.tokens = TokenManager(
            config.npsso,
            self.session,
            safety_margin=config.token_safety_margin,
            timeout=config.request_timeout,
            clock=clock,
        )
        self.pipeline = RequestPipeline(
            self.session,
            API_BASE_URL,
            delay=config.rate_limit_delay,
            region=config.region,
            headers=self.tokens.authorization_header,
            timeout=config.request_timeout,
            sleep=sleep,
        )

    async def request(self, method: str, target: str, payload: Any = None) -> Any:
        """Validate the access token, then queue a request on the pipeline."""
        await self.tokens.ensure_valid()
        return await self.pipeline.submit(method, target, payload)

    async def authenticate(self) -> None:
        """Authenticate with PSN using the configured NPSSO token."""
        await self.tokens.authenticate()

    async def validate_connection(self) -> list[ChildAccount]:
        """Validate the PSN connection by listing the family's child accounts."""
        return await self.list_child_accounts()

    async def list_child_accounts(self) -> list[ChildAccount]:
        """List child accounts under the authenticated account."""
        data = await self.request("GET", f"{FAMILY_API}/families") or {}
        return [
            ChildAccount(
                account_id=member.get("onlineId", ""),
                display_name=member.get("displayName", ""),
                age=member.get("age"),
                restrictions=member.get("parentalControls"),
            )
            for member in data.get("familyMembers", [])
            if member.get("role") == "child"
        ]

    async def get_play_time(self, account_id: str) -> PlayTime:
        """Get play time for an account."""
        data = (
            await self.request("GET", f"{FAMILY_API}/users/{account_id}/playTime")
            or {}
        )
        return PlayTime(
            account_id=account_id,
            today_minutes=data.get("todayPlayTime") or 0,
            week_minutes=data.get("weekPlayTime") or 0,
            currently_playing=data.get("status") == "online",
            current_game=data.get("currentTitle"),
            last_played=data.get("lastPlayedAt"),
        )

    async def set_play_time_limit(self, account_id: str, limit_minutes: int) -> None:
        """Set the daily play time limit (in minutes) for an account."""
        _LOG.info(
            "[%s] Setting play time limit: %d minutes", account_id, limit_minutes
        )
        await self.request(
            "PUT",
            f"{FAMILY_API}/users/{account_id}/playTimeSettings",
            {"dailyPlayTimeLimit": limit_minutes, "enabled": limit_minutes > 0},
        )

    async def block_game(self, account_id: str, game_id: str) -> None:
        """Add a game to the restricted content list of an account."""
        _LOG.info("[%s] Blocking game %s", account_id, game_id)
        await self.request(
            "POST",
            f"{FAMILY_API}/users/{account_id}/restrictedContent",
            {"contentId": game_id, "type": "game", "action": "block"},
        )

    async def unblock_game(self, account_id: str, game_id: str) -> None:
        """Remove a game from the restricted content list of an account."""
        _LOG.info("[%s] Unblocking game %s", account_id, game_id)
        await self.request(
            "DELETE", f"{FAMILY_API}/users/{account_id}/restrictedContent/{game_id}"
        )

    async def get_restricted_content(self, account_id: str) -> list[dict[str, Any]]:
        """Get the restricted content list for an account."""
        data = await self.request(
            "GET", f"{FAMILY_API}/users/{account_id}/restrictedContent"
        )
        return (data or {}).get("restrictedContent", [])

    async def get_parental_controls(self, account_id: str) -> dict[str, Any]:
        """Get parental control settings for an account."""
        data = await self.request(
            "GET", f"{FAMILY_API}/users/{account_id}/parentalControls"
        )
        return data or {}

    async def update_parental_controls(
        self, account_id: str, settings: dict[str, Any]
    ) -> None:
        """Update parental control settings for an account."""
        _LOG.info("[%s] Updating parental controls", account_id)
        await self.request(
            "PUT", f"{FAMILY_API}/users/{account_id}/parentalControls", settings
        )

    def close(self):
        """Close the PSN connection and cleanup resources."""
        try:
            self.pipeline.close()
        except Exception as ex:  # pylint: disable=broad-exception-caught
            _LOG.debug("Error during PSN cleanup: %s", ex)
