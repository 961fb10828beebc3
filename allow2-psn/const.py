"""
Constants for the Allow2 PlayStation Network plugin.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

from enum import StrEnum

PLUGIN_ID = "allow2automate-playstation"
PLUGIN_NAME = "PlayStation Network"
PLUGIN_VERSION = "1.0.0"

AUTH_BASE_URL = "https://ca.account.sony.com"
TOKEN_ENDPOINT = "/api/authz/v3/oauth/token"
API_BASE_URL = "https://m.np.playstation.com"
FAMILY_API = "/api/familyManagement/v1"

OAUTH_SCOPE = "psn:mobile.v2.core psn:clientapp"
GRANT_NPSSO = "npsso_code"
GRANT_REFRESH = "refresh_token"

DEFAULT_REGION = "en-us"
SUPPORTED_REGIONS = (
    "en-us",
    "en-gb",
    "en-au",
    "de-de",
    "fr-fr",
    "es-es",
    "it-it",
    "ja-jp",
)

DEFAULT_DAILY_LIMIT = 480  # minutes
DEFAULT_POLL_INTERVAL = 60.0  # seconds
DEFAULT_RATE_LIMIT_DELAY = 0.1  # seconds
DEFAULT_TOKEN_SAFETY_MARGIN = 300.0  # seconds
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds

# Minutes reported to Allow2 per monitoring tick while a child is playing.
MONITOR_INCREMENT_MINUTES = 1

ACTIVITY_GAMING = "gaming"
PLATFORM_NAME = "PlayStation"


class PluginEvents(StrEnum):
    """Notifications emitted by the plugin."""

    INITIALIZED = "initialized"
    UNLOADED = "unloaded"
    SESSION_SUSPENDED = "sessionSuspended"
    SESSION_RESUMED = "sessionResumed"
    RESTRICTIONS_APPLIED = "restrictionsApplied"
    STATE_PROCESSED = "stateProcessed"
    ERROR = "error"


class RestrictionAction(StrEnum):
    """Game restriction actions understood by the PSN restricted content list."""

    BLOCK = "block"
    UNBLOCK = "unblock"
