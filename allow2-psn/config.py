"""
Configuration handling of the Allow2 PlayStation Network plugin.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from const import (
    DEFAULT_DAILY_LIMIT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RATE_LIMIT_DELAY,
    DEFAULT_REGION,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOKEN_SAFETY_MARGIN,
    SUPPORTED_REGIONS,
)
from errors import ConfigurationError
from psnawp_api.core.psnawp_exceptions import PSNAWPInvalidTokenError
from psnawp_api.utils.misc import parse_npsso_token

_LOG = logging.getLogger(__name__)


@dataclass
class AccountMapping:
    """Link between an Allow2 child and a PSN account."""

    child_id: str
    """Allow2 child identifier."""
    psn_account_id: str
    """PSN account identifier of the child."""


@dataclass
class PlayStationConfig:
    """Plugin configuration."""

    npsso: str
    """NPSSO token used to obtain PSN access tokens."""
    account_mapping: list[AccountMapping] = field(default_factory=list)
    region: str = DEFAULT_REGION
    default_daily_limit: int = DEFAULT_DAILY_LIMIT
    """Daily play time limit in minutes restored when a session is resumed."""
    poll_interval: float = DEFAULT_POLL_INTERVAL
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY
    token_safety_margin: float = DEFAULT_TOKEN_SAFETY_MARGIN
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PlayStationConfig":
        """
        Build and validate a configuration from its JSON representation.

        :param data: Configuration as stored by the Allow2 host
        :raises ConfigurationError: If a required value is missing or malformed
        """
        if not data:
            raise ConfigurationError("Plugin configuration is required")

        raw_npsso = (data.get("npsso") or "").strip()
        try:
            npsso = parse_npsso_token(raw_npsso) if raw_npsso else ""
        except PSNAWPInvalidTokenError as ex:
            raise ConfigurationError(f"Invalid PSN NPSSO token: {ex}") from ex
        if not npsso:
            raise ConfigurationError("PSN NPSSO token is required in configuration")

        raw_mapping = data.get("accountMapping")
        if not isinstance(raw_mapping, list):
            raise ConfigurationError("Account mapping is required in configuration")

        mapping: list[AccountMapping] = []
        for entry in raw_mapping:
            try:
                child_id = entry["childId"]
                psn_account_id = entry["psnAccountId"]
            except (KeyError, TypeError) as ex:
                raise ConfigurationError(
                    f"Invalid account mapping entry: {entry!r}"
                ) from ex
            if not child_id or not psn_account_id:
                raise ConfigurationError("All account mappings must be complete")
            mapping.append(AccountMapping(str(child_id), str(psn_account_id)))

        region = data.get("region") or DEFAULT_REGION
        if region not in SUPPORTED_REGIONS:
            _LOG.warning("Region %s is not a known PSN region", region)

        try:
            config = cls(
                npsso=npsso,
                account_mapping=mapping,
                region=region,
                default_daily_limit=int(
                    data.get("defaultDailyLimit") or DEFAULT_DAILY_LIMIT
                ),
                poll_interval=float(data.get("pollInterval", DEFAULT_POLL_INTERVAL)),
                rate_limit_delay=float(
                    data.get("rateLimitDelay", DEFAULT_RATE_LIMIT_DELAY)
                ),
                token_safety_margin=float(
                    data.get("tokenSafetyMargin", DEFAULT_TOKEN_SAFETY_MARGIN)
                ),
                request_timeout=float(
                    data.get("requestTimeout", DEFAULT_REQUEST_TIMEOUT)
                ),
            )
        except (TypeError, ValueError) as ex:
            raise ConfigurationError(f"Invalid configuration value: {ex}") from ex

        if config.poll_interval <= 0:
            raise ConfigurationError("pollInterval must be positive")
        if config.rate_limit_delay < 0:
            raise ConfigurationError("rateLimitDelay must not be negative")

        _LOG.debug("Configuration validated (%d mapped accounts)", len(mapping))
        return config

    def to_dict(self) -> dict[str, Any]:
        """Serialize the configuration back into its JSON representation."""
        return {
            "npsso": self.npsso,
            "region": self.region,
            "accountMapping": [
                {"childId": m.child_id, "psnAccountId": m.psn_account_id}
                for m in self.account_mapping
            ],
            "defaultDailyLimit": self.default_daily_limit,
            "pollInterval": self.poll_interval,
            "rateLimitDelay": self.rate_limit_delay,
            "tokenSafetyMargin": self.token_safety_margin,
            "requestTimeout": self.request_timeout,
        }

    def redacted(self) -> dict[str, Any]:
        """Return the configuration without secrets, for logging and status output."""
        data = self.to_dict()
        data["npsso"] = "***"
        return data


def load_config(path: str | Path) -> PlayStationConfig:
    """
    Load the plugin configuration from a JSON file.

    :raises ConfigurationError: If the file cannot be read or is invalid
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as ex:
        _LOG.error("Failed to read configuration %s: %s", path, ex)
        raise ConfigurationError(f"Cannot read configuration {path}: {ex}") from ex
    return PlayStationConfig.from_dict(data)

