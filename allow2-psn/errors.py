"""
Exceptions raised by the Allow2 PlayStation Network plugin.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""


class PlayStationPluginError(Exception):
    """Base class for all plugin errors."""


class ConfigurationError(PlayStationPluginError):
    """Configuration is missing or invalid. Fatal at startup, never retried."""


class AuthenticationError(PlayStationPluginError):
    """The NPSSO credential or the derived tokens were rejected."""


class RequestError(PlayStationPluginError):
    """A single PSN request failed.

    :param status: HTTP status code, or ``None`` for transport failures.
    :param message: Message or response body returned by the remote.
    """

    def __init__(self, status: int | None, message: str) -> None:
        self.status = status
        self.message = message
        if status is None:
            super().__init__(message)
        else:
            super().__init__(f"HTTP {status}: {message}")


class MappingError(PlayStationPluginError):
    """No PSN account is mapped to an Allow2 child."""

    def __init__(self, child_id: str) -> None:
        self.child_id = child_id
        super().__init__(f"No PSN account mapped for child {child_id}")
