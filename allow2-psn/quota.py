"""
Contract of the Allow2 quota service used by the plugin.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from const import ACTIVITY_GAMING, MONITOR_INCREMENT_MINUTES, PLATFORM_NAME


class QuotaClient(Protocol):
    """Allow2 client supplied by the host application."""

    async def check(self, request: dict[str, Any]) -> dict[str, Any]:
        """Check (and optionally log) activities, returning ``allowed``/``remaining``."""

    async def log(self, request: dict[str, Any]) -> Any:
        """Log activity usage."""


@dataclass
class QuotaResult:
    """Outcome of an Allow2 quota check for a child."""

    allowed: bool
    remaining: Any
    play_time_minutes: int


def gaming_check_request(child_id: str, minutes: int) -> dict[str, Any]:
    """Build the Allow2 check request for today's gaming time."""
    return {
        "childId": child_id,
        "activities": [{"activity": ACTIVITY_GAMING, "log": True, "time": minutes}],
    }


def gaming_log_request(
    child_id: str,
    account_id: str,
    game: str | None,
    minutes: int = MONITOR_INCREMENT_MINUTES,
) -> dict[str, Any]:
    """Build the Allow2 log request for a monitoring increment."""
    return {
        "childId": child_id,
        "activities": [
            {
                "activity": ACTIVITY_GAMING,
                "time": minutes,
                "meta": {
                    "game": game,
                    "platform": PLATFORM_NAME,
                    "accountId": account_id,
                },
            }
        ],
    }
