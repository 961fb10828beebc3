"""
Play session state of the mapped PSN accounts.

Session state lives in memory. Persistence across restarts only happens when a
``SessionStore`` other than ``MemorySessionStore`` is supplied.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

_LOG = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Last known play and suspension state of a PSN account."""

    suspended: bool = False
    suspended_at: float | None = None
    resumed_at: float | None = None
    last_active: float | None = None
    current_game: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the state to a JSON compatible dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionState":
        """Deserialize a state, ignoring unknown keys."""
        return cls(
            suspended=bool(data.get("suspended", False)),
            suspended_at=data.get("suspended_at"),
            resumed_at=data.get("resumed_at"),
            last_active=data.get("last_active"),
            current_game=data.get("current_game"),
        )


class SessionStore(ABC):
    """Storage backend for session state."""

    @abstractmethod
    async def load(self) -> dict[str, SessionState]:
        raise NotImplementedError

    @abstractmethod
    async def save(self, sessions: dict[str, SessionState]) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    """Keeps session state for the lifetime of the process only."""

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}

    async def load(self) -> dict[str, SessionState]:
        return {
            account_id: SessionState.from_dict(data)
            for account_id, data in self._sessions.items()
        }

    async def save(self, sessions: dict[str, SessionState]) -> None:
        self._sessions = {
            account_id: state.to_dict() for account_id, state in sessions.items()
        }


class FileSessionStore(SessionStore):
    """Keeps session state in a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def load(self) -> dict[str, SessionState]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read)

    async def save(self, sessions: dict[str, SessionState]) -> None:
        payload = {
            account_id: state.to_dict() for account_id, state in sessions.items()
        }
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, payload)

    def _read(self) -> dict[str, SessionState]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError(
                "Session store file is invalid; expected top-level JSON object."
            )
        return {
            account_id: SessionState.from_dict(data) for account_id, data in raw.items()
        }

    def _write(self, payload: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=self._path.name, suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class SessionRegistry:
    """Mapping from PSN account id to its session state."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._sessions

    def get(self, account_id: str) -> SessionState | None:
        """Return the state of an account, if it is tracked."""
        return self._sessions.get(account_id)

    def get_or_create(self, account_id: str) -> SessionState:
        """Return the state of an account, tracking it if needed."""
        return self._sessions.setdefault(account_id, SessionState())

    def accounts(self) -> list[str]:
        """Return the tracked account ids."""
        return list(self._sessions)

    def mark_suspended(self, account_id: str, now: float) -> SessionState:
        state = self.get_or_create(account_id)
        state.suspended = True
        state.suspended_at = now
        return state

    def mark_resumed(self, account_id: str, now: float) -> SessionState:
        state = self.get_or_create(account_id)
        state.suspended = False
        state.resumed_at = now
        return state

    def mark_active(
        self, account_id: str, game: str | None, now: float
    ) -> SessionState:
        state = self.get_or_create(account_id)
        state.last_active = now
        state.current_game = game
        return state

    async def restore(self, store: SessionStore) -> None:
        """Replace the tracked sessions with those held by ``store``."""
        self._sessions = await store.load()
        _LOG.debug("Restored %d sessions", len(self._sessions))

    async def persist(self, store: SessionStore) -> None:
        """Write the tracked sessions to ``store``."""
        await store.save(self._sessions)
        _LOG.debug("Saved %d sessions", len(self._sessions))
