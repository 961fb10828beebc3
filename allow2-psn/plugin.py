"""
This module implements the Allow2 plugin that enforces quotas on PSN accounts.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from api import ChildAccount, PlayStationNetwork, PlayTime
from config import AccountMapping, PlayStationConfig
from const import (
    PLUGIN_ID,
    PLUGIN_NAME,
    PLUGIN_VERSION,
    PluginEvents,
    RestrictionAction,
)
from errors import MappingError, PlayStationPluginError
from pyee import EventEmitter
from quota import QuotaClient, QuotaResult, gaming_check_request, gaming_log_request
from sessions import MemorySessionStore, SessionRegistry, SessionStore

_LOG = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of loading or unloading the plugin."""

    success: bool
    error: str | None = None


@dataclass
class ChildResult:
    """Outcome of processing the Allow2 state of one child."""

    child_id: str
    success: bool = True
    psn_account_id: str | None = None
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    actions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StateResult:
    """Outcome of processing a full Allow2 state update."""

    success: bool
    results: list[ChildResult] = field(default_factory=list)
    error: str | None = None


class PlayStationPlugin:
    """
    Allow2 plugin for PlayStation Network parental controls.

    Translates Allow2 quota decisions into PSN play time limits and restricted
    content, and reports play time back to Allow2 from a polling loop.
    Notifications are published on ``events``; every operation also returns
    its outcome.
    """

    id = PLUGIN_ID
    name = PLUGIN_NAME
    version = PLUGIN_VERSION

    def __init__(
        self,
        quota: QuotaClient,
        *,
        store: SessionStore | None = None,
        api_factory: Callable[[PlayStationConfig], PlayStationNetwork] = (
            PlayStationNetwork
        ),
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Create the plugin around an Allow2 quota client."""
        self.events = EventEmitter()
        self.sessions = SessionRegistry()
        self._quota = quota
        self._store = store or MemorySessionStore()
        self._api_factory = api_factory
        self._clock = clock
        self._sleep = sleep
        self._config: PlayStationConfig | None = None
        self._psn: PlayStationNetwork | None = None
        self._monitor_task: asyncio.Task | None = None
        self._initialized = False
        self._restored = False
        self.last_error: Exception | None = None

    @property
    def initialized(self) -> bool:
        """Whether the plugin is loaded and authenticated."""
        return self._initialized

    @property
    def monitoring(self) -> bool:
        """Whether the play time monitoring loop is running."""
        return self._monitor_task is not None and not self._monitor_task.done()

    @property
    def config(self) -> PlayStationConfig | None:
        """Return the active configuration."""
        return self._config

    async def on_load(self, config_data: dict[str, Any]) -> LoadResult:
        """
        Load the plugin: validate configuration, authenticate and start monitoring.

        :param config_data: Plugin configuration as stored by the Allow2 host
        :return: Load result; failures are reported, not raised
        """
        _LOG.info("Loading PlayStation plugin")
        try:
            self._config = PlayStationConfig.from_dict(config_data)
            if self._psn:
                self._psn.close()
            self._psn = self._api_factory(self._config)
            await self._psn.authenticate()
            if not self._restored:
                await self.sessions.restore(self._store)
                self._restored = True
            self.start_monitoring()
        except Exception as ex:  # pylint: disable=broad-exception-caught
            _LOG.error("Error loading PlayStation plugin: %s", ex)
            if self._psn:
                self._psn.close()
                self._psn = None
            self._fail(ex)
            return LoadResult(False, str(ex))

        self._initialized = True
        self.events.emit(PluginEvents.INITIALIZED)
        _LOG.info("PlayStation plugin loaded")
        return LoadResult(True)

    async def on_unload(self) -> LoadResult:
        """Stop monitoring, save session state and release the PSN connection."""
        _LOG.info("Unloading PlayStation plugin")
        try:
            await self.stop_monitoring()
            # Only write back state that was read from the store first.
            if self._restored:
                await self.sessions.persist(self._store)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            _LOG.error("Error unloading PlayStation plugin: %s", ex)
            return LoadResult(False, str(ex))
        finally:
            if self._psn:
                self._psn.close()
                self._psn = None
            self._initialized = False

        self.events.emit(PluginEvents.UNLOADED)
        return LoadResult(True)

    async def new_state(self, allow2_state: dict[str, Any]) -> StateResult:
        """
        Process a quota state update from Allow2.

        Each child is processed independently; a failure for one child is
        recorded in its result and does not affect the others.
        """
        _LOG.debug("Processing new Allow2 state")
        if not self._initialized:
            error = PlayStationPluginError("Plugin not initialized")
            self._fail(error)
            return StateResult(False, error=str(error))

        try:
            results = []
            for child_id, child_state in (allow2_state.get("children") or {}).items():
                results.append(await self.process_child_state(child_id, child_state))

            self.events.emit(PluginEvents.STATE_PROCESSED, {"results": results})
        except Exception as ex:  # pylint: disable=broad-exception-caught
            _LOG.error("State processing error: %s", ex)
            self._fail(ex)
            return StateResult(False, error=str(ex))
        return StateResult(True, results)

    async def process_child_state(
        self, child_id: str, state: dict[str, Any]
    ) -> ChildResult:
        """Apply the Allow2 state of a single child to its PSN account."""
        try:
            account = self.account_for_child(child_id)
        except MappingError as ex:
            _LOG.warning("%s", ex)
            return ChildResult(
                child_id, skipped=True, reason="No PSN account mapped"
            )

        result = ChildResult(child_id, psn_account_id=account.psn_account_id)
        try:
            if state.get("blocked"):
                _LOG.info("[%s] Child %s is blocked", account.psn_account_id, child_id)
                await self.suspend(account)
                result.actions.append(
                    {"type": "suspend", "reason": state.get("blockedReason")}
                )
            else:
                quota = await self.check_quota(child_id, account)
                session = self.sessions.get(account.psn_account_id)
                if quota.allowed:
                    if session and session.suspended:
                        await self.resume(account)
                        result.actions.append({"type": "resume"})
                else:
                    _LOG.info("[%s] Quota exhausted", account.psn_account_id)
                    await self.suspend(account)
                    result.actions.append(
                        {"type": "suspend", "reason": "Quota exhausted"}
                    )

            games = (state.get("restrictions") or {}).get("games")
            if games:
                await self.apply_game_restrictions(account, games)
                result.actions.append({"type": "restrictions", "games": games})
        except Exception as ex:  # pylint: disable=broad-exception-caught
            _LOG.error(
                "[%s] Error processing child %s: %s",
                account.psn_account_id,
                child_id,
                ex,
            )
            result.success = False
            result.error = str(ex)
        return result

    async def check_quota(self, child_id: str, account: AccountMapping) -> QuotaResult:
        """Report today's PSN play time to Allow2 and return its decision."""
        play_time = await self._api().get_play_time(account.psn_account_id)
        response = await self._quota.check(
            gaming_check_request(child_id, play_time.today_minutes)
        )
        return QuotaResult(
            allowed=bool(response.get("allowed")),
            remaining=response.get("remaining"),
            play_time_minutes=play_time.today_minutes,
        )

    async def suspend(self, account: AccountMapping) -> None:
        """Revoke play by setting the daily play time limit to zero."""
        _LOG.info("[%s] Suspending session", account.psn_account_id)
        await self._api().set_play_time_limit(account.psn_account_id, 0)
        self.sessions.mark_suspended(account.psn_account_id, self._clock())
        self.events.emit(
            PluginEvents.SESSION_SUSPENDED, {"accountId": account.psn_account_id}
        )

    async def resume(
        self, account: AccountMapping, daily_limit_minutes: int | None = None
    ) -> None:
        """
        Restore play by resetting the daily play time limit.

        Safe to call on an account that is not suspended.

        :param daily_limit_minutes: Limit to set, defaults to the configured daily limit
        """
        if daily_limit_minutes is None:
            daily_limit_minutes = self._require_config().default_daily_limit
        _LOG.info("[%s] Resuming session", account.psn_account_id)
        await self._api().set_play_time_limit(
            account.psn_account_id, daily_limit_minutes
        )
        self.sessions.mark_resumed(account.psn_account_id, self._clock())
        self.events.emit(
            PluginEvents.SESSION_RESUMED, {"accountId": account.psn_account_id}
        )

    async def apply_game_restrictions(
        self, account: AccountMapping, restrictions: list[dict[str, Any]]
    ) -> None:
        """
        Block or unblock games in list order, one request per entry.

        Stops at the first failure and re-raises it; entries applied before the
        failure stay applied.
        """
        _LOG.info("[%s] Applying game restrictions", account.psn_account_id)
        psn = self._api()
        for restriction in restrictions:
            action = restriction.get("action")
            game_id = restriction.get("gameId")
            if action == RestrictionAction.BLOCK:
                await psn.block_game(account.psn_account_id, game_id)
            elif action == RestrictionAction.UNBLOCK:
                await psn.unblock_game(account.psn_account_id, game_id)
            else:
                _LOG.warning(
                    "[%s] Ignoring unknown restriction action %s for game %s",
                    account.psn_account_id,
                    action,
                    game_id,
                )

        self.events.emit(
            PluginEvents.RESTRICTIONS_APPLIED,
            {"accountId": account.psn_account_id, "restrictions": restrictions},
        )

    def start_monitoring(self) -> None:
        """Start polling play time for all mapped accounts."""
        if self.monitoring:
            return
        _LOG.debug("Starting session monitoring")
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._monitor_loop()
        )

    async def stop_monitoring(self) -> None:
        """Stop the monitoring loop."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        _LOG.debug("Stopped session monitoring")

    async def _monitor_loop(self) -> None:
        interval = self._require_config().poll_interval
        while True:
            await self._sleep(interval)
            try:
                await self.monitor_sessions()
            except Exception as ex:  # pylint: disable=broad-exception-caught
                _LOG.error("Monitoring error: %s", ex)

    async def monitor_sessions(self) -> None:
        """
        Report one minute of gaming to Allow2 for every account currently playing.

        This is a coarse approximation of continuous tracking: each poll that
        finds an account online counts as one minute, regardless of when the
        session actually started or ended.
        """
        for account in self.all_accounts():
            try:
                play_time: PlayTime = await self._api().get_play_time(
                    account.psn_account_id
                )
                if not play_time.currently_playing:
                    continue
                await self._quota.log(
                    gaming_log_request(
                        account.child_id,
                        account.psn_account_id,
                        play_time.current_game,
                    )
                )
                self.sessions.mark_active(
                    account.psn_account_id, play_time.current_game, self._clock()
                )
            except Exception as ex:  # pylint: disable=broad-exception-caught
                _LOG.error(
                    "[%s] Error while monitoring session: %s",
                    account.psn_account_id,
                    ex,
                )

    def account_for_child(self, child_id: str) -> AccountMapping:
        """
        Return the PSN account mapped to an Allow2 child.

        :raises MappingError: If the child has no mapped account
        """
        for mapping in self._require_config().account_mapping:
            if mapping.child_id == child_id:
                return mapping
        raise MappingError(child_id)

    def all_accounts(self) -> list[AccountMapping]:
        """Return every mapped PSN account."""
        return list(self._require_config().account_mapping)

    def get_status(self) -> dict[str, Any]:
        """Return a status summary of the plugin."""
        return {
            "initialized": self._initialized,
            "lastError": str(self.last_error) if self.last_error else None,
            "activeSessions": self.sessions.accounts(),
            "monitoring": self.monitoring,
        }

    async def list_child_accounts(self) -> list[ChildAccount]:
        """List child accounts from PSN."""
        self._require_initialized()
        return await self._api().list_child_accounts()

    async def get_play_time(self, account_id: str) -> PlayTime:
        """Get play time for a PSN account."""
        self._require_initialized()
        return await self._api().get_play_time(account_id)

    def _fail(self, error: Exception) -> None:
        self.last_error = error
        # pyee raises unhandled "error" events, so only emit when someone listens.
        if self.events.listeners(PluginEvents.ERROR):
            self.events.emit(PluginEvents.ERROR, error)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise PlayStationPluginError("Plugin not initialized")

    def _require_config(self) -> PlayStationConfig:
        if self._config is None:
            raise PlayStationPluginError("Plugin not configured")
        return self._config

    def _api(self) -> PlayStationNetwork:
        if self._psn is None:
            raise PlayStationPluginError("PSN connection not established")
        return self._psn
