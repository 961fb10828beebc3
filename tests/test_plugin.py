import asyncio

import pytest
import pytest_asyncio

from api import PlayTime
from config import AccountMapping
from const import PluginEvents
from errors import (
    AuthenticationError,
    ConfigurationError,
    PlayStationPluginError,
    RequestError,
)
from plugin import PlayStationPlugin
from sessions import FileSessionStore, SessionState

CHILD_1 = AccountMapping("child-1", "psn-1")


class FakePSN:
    """Records the PSN operations issued by the plugin."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.play_times: dict[str, PlayTime] = {}
        self.failures: dict[tuple, Exception] = {}
        self.auth_error: Exception | None = None
        self.closed = False

    def _record(self, *call) -> None:
        self.calls.append(call)
        if call in self.failures:
            raise self.failures[call]

    async def authenticate(self) -> None:
        if self.auth_error:
            raise self.auth_error

    async def get_play_time(self, account_id: str) -> PlayTime:
        self._record("play_time", account_id)
        return self.play_times.get(
            account_id, PlayTime(account_id, 0, 0, False, None, None)
        )

    async def set_play_time_limit(self, account_id: str, limit: int) -> None:
        self._record("limit", account_id, limit)

    async def block_game(self, account_id: str, game_id: str) -> None:
        self._record("block", account_id, game_id)

    async def unblock_game(self, account_id: str, game_id: str) -> None:
        self._record("unblock", account_id, game_id)

    async def list_child_accounts(self) -> list:
        return []

    def close(self) -> None:
        self.closed = True


class FakeQuota:
    def __init__(self, allowed: bool = True) -> None:
        self.allowed: dict[str, bool] = {}
        self.default_allowed = allowed
        self.checks: list[dict] = []
        self.logs: list[dict] = []

    async def check(self, request: dict) -> dict:
        self.checks.append(request)
        allowed = self.allowed.get(request["childId"], self.default_allowed)
        return {"allowed": allowed, "remaining": 30 if allowed else 0}

    async def log(self, request: dict) -> None:
        self.logs.append(request)


class EventRecorder:
    def __init__(self, plugin: PlayStationPlugin) -> None:
        self.events: list[tuple] = []
        for event in PluginEvents:
            plugin.events.on(event, self._handler(event))

    def _handler(self, event):
        def handler(*args):
            self.events.append((str(event), *args))

        return handler

    def names(self) -> list[str]:
        return [event[0] for event in self.events]


@pytest.fixture
def psn() -> FakePSN:
    return FakePSN()


@pytest.fixture
def quota() -> FakeQuota:
    return FakeQuota()


@pytest_asyncio.fixture
async def plugin(psn, quota, config_data, clock):
    instance = PlayStationPlugin(quota, api_factory=lambda config: psn, clock=clock)
    result = await instance.on_load(config_data)
    assert result.success
    yield instance
    await instance.on_unload()


@pytest.mark.asyncio
async def test_on_load_and_unload(psn, quota, config_data) -> None:
    plugin = PlayStationPlugin(quota, api_factory=lambda config: psn)
    recorder = EventRecorder(plugin)

    result = await plugin.on_load(config_data)

    assert result.success
    assert plugin.initialized
    assert plugin.monitoring
    assert plugin.get_status() == {
        "initialized": True,
        "lastError": None,
        "activeSessions": [],
        "monitoring": True,
    }

    unloaded = await plugin.on_unload()

    assert unloaded.success
    assert not plugin.initialized
    assert not plugin.monitoring
    assert psn.closed
    assert recorder.names() == ["initialized", "unloaded"]


@pytest.mark.asyncio
async def test_on_load_rejects_missing_npsso(psn, quota, config_data) -> None:
    config_data["npsso"] = ""
    plugin = PlayStationPlugin(quota, api_factory=lambda config: psn)
    recorder = EventRecorder(plugin)

    result = await plugin.on_load(config_data)

    assert not result.success
    assert "NPSSO" in result.error
    assert isinstance(plugin.last_error, ConfigurationError)
    assert recorder.names() == ["error"]
    assert not plugin.monitoring


@pytest.mark.asyncio
async def test_on_load_authentication_failure(psn, quota, config_data) -> None:
    psn.auth_error = AuthenticationError("npsso expired")
    plugin = PlayStationPlugin(quota, api_factory=lambda config: psn)

    result = await plugin.on_load(config_data)

    assert not result.success
    assert plugin.get_status()["lastError"] == "npsso expired"
    assert psn.closed


@pytest.mark.asyncio
async def test_sessions_restored_from_store(psn, quota, config_data, tmp_path) -> None:
    store = FileSessionStore(tmp_path / "sessions.json")
    await store.save({"psn-1": SessionState(suspended=True, suspended_at=5.0)})
    plugin = PlayStationPlugin(quota, store=store, api_factory=lambda config: psn)

    await plugin.on_load(config_data)
    plugin.sessions.mark_active("psn-2", "Astro Bot", 9.0)
    await plugin.on_unload()

    saved = await store.load()
    assert saved["psn-1"].suspended
    assert saved["psn-2"].current_game == "Astro Bot"


@pytest.mark.asyncio
async def test_failed_load_keeps_stored_sessions(psn, quota, config_data, tmp_path) -> None:
    store = FileSessionStore(tmp_path / "sessions.json")
    await store.save({"psn-1": SessionState(suspended=True, suspended_at=5.0)})
    psn.auth_error = AuthenticationError("npsso expired")
    plugin = PlayStationPlugin(quota, store=store, api_factory=lambda config: psn)

    assert not (await plugin.on_load(config_data)).success
    assert (await plugin.on_unload()).success

    saved = await store.load()
    assert saved["psn-1"].suspended


@pytest.mark.asyncio
async def test_reload_closes_previous_connection(quota, config_data) -> None:
    created: list[FakePSN] = []

    def factory(config):
        created.append(FakePSN())
        return created[-1]

    plugin = PlayStationPlugin(quota, api_factory=factory)

    await plugin.on_load(config_data)
    await plugin.on_load(config_data)

    assert len(created) == 2
    assert created[0].closed
    assert not created[1].closed
    await plugin.on_unload()
    assert created[1].closed


@pytest.mark.asyncio
async def test_suspend_sets_zero_limit(plugin, psn, clock) -> None:
    recorder = EventRecorder(plugin)

    await plugin.suspend(CHILD_1)

    assert psn.calls == [("limit", "psn-1", 0)]
    assert plugin.sessions.get("psn-1") == SessionState(
        suspended=True, suspended_at=clock.now
    )
    assert recorder.events == [("sessionSuspended", {"accountId": "psn-1"})]


@pytest.mark.asyncio
async def test_resume_is_idempotent(plugin, psn) -> None:
    recorder = EventRecorder(plugin)

    await plugin.resume(CHILD_1)
    await plugin.resume(CHILD_1)

    assert psn.calls == [("limit", "psn-1", 480), ("limit", "psn-1", 480)]
    assert plugin.sessions.get("psn-1").suspended is False
    assert recorder.names() == ["sessionResumed", "sessionResumed"]


@pytest.mark.asyncio
async def test_resume_with_explicit_limit(plugin, psn) -> None:
    await plugin.resume(CHILD_1, 90)

    assert psn.calls == [("limit", "psn-1", 90)]


@pytest.mark.asyncio
async def test_failed_suspend_leaves_state_untouched(plugin, psn) -> None:
    psn.failures[("limit", "psn-1", 0)] = RequestError(500, "boom")

    with pytest.raises(RequestError):
        await plugin.suspend(CHILD_1)

    assert plugin.sessions.get("psn-1") is None


@pytest.mark.asyncio
async def test_game_restrictions_in_order(plugin, psn) -> None:
    recorder = EventRecorder(plugin)
    restrictions = [
        {"action": "block", "gameId": "g1"},
        {"action": "unblock", "gameId": "g2"},
    ]

    await plugin.apply_game_restrictions(CHILD_1, restrictions)

    assert psn.calls == [("block", "psn-1", "g1"), ("unblock", "psn-1", "g2")]
    assert recorder.events == [
        ("restrictionsApplied", {"accountId": "psn-1", "restrictions": restrictions})
    ]


@pytest.mark.asyncio
async def test_game_restrictions_stop_at_first_failure(plugin, psn) -> None:
    recorder = EventRecorder(plugin)
    psn.failures[("block", "psn-1", "g1")] = RequestError(403, "forbidden")

    with pytest.raises(RequestError, match="forbidden"):
        await plugin.apply_game_restrictions(
            CHILD_1,
            [{"action": "block", "gameId": "g1"}, {"action": "unblock", "gameId": "g2"}],
        )

    assert psn.calls == [("block", "psn-1", "g1")]
    assert recorder.events == []


@pytest.mark.asyncio
async def test_unknown_restriction_action_is_skipped(plugin, psn) -> None:
    await plugin.apply_game_restrictions(
        CHILD_1,
        [{"action": "hide", "gameId": "g0"}, {"action": "block", "gameId": "g1"}],
    )

    assert psn.calls == [("block", "psn-1", "g1")]


@pytest.mark.asyncio
async def test_check_quota_reports_play_time(plugin, psn, quota) -> None:
    psn.play_times["psn-1"] = PlayTime("psn-1", 75, 200, True, "Astro Bot", None)

    result = await plugin.check_quota("child-1", CHILD_1)

    assert result.allowed
    assert result.remaining == 30
    assert result.play_time_minutes == 75
    assert quota.checks == [
        {
            "childId": "child-1",
            "activities": [{"activity": "gaming", "log": True, "time": 75}],
        }
    ]


@pytest.mark.asyncio
async def test_new_state_skips_unmapped_child(plugin, psn) -> None:
    recorder = EventRecorder(plugin)

    result = await plugin.new_state(
        {"children": {"child-1": {"blocked": True}, "child-9": {"blocked": True}}}
    )

    assert result.success
    first, second = result.results
    assert first.success and first.psn_account_id == "psn-1"
    assert first.actions == [{"type": "suspend", "reason": None}]
    assert second.skipped
    assert second.reason == "No PSN account mapped"
    assert psn.calls == [("limit", "psn-1", 0)]
    assert recorder.names() == ["sessionSuspended", "stateProcessed"]


@pytest.mark.asyncio
async def test_new_state_suspends_when_quota_exhausted(plugin, psn, quota) -> None:
    quota.allowed["child-2"] = False

    result = await plugin.new_state({"children": {"child-1": {}, "child-2": {}}})

    assert [r.actions for r in result.results] == [
        [],
        [{"type": "suspend", "reason": "Quota exhausted"}],
    ]
    assert ("limit", "psn-2", 0) in psn.calls
    assert not any(call[0] == "limit" and call[1] == "psn-1" for call in psn.calls)


@pytest.mark.asyncio
async def test_new_state_resumes_suspended_account(plugin, psn) -> None:
    plugin.sessions.mark_suspended("psn-1", 1.0)

    result = await plugin.new_state(
        {
            "children": {
                "child-1": {
                    "blocked": False,
                    "restrictions": {"games": [{"action": "block", "gameId": "g1"}]},
                }
            }
        }
    )

    assert result.results[0].actions == [
        {"type": "resume"},
        {"type": "restrictions", "games": [{"action": "block", "gameId": "g1"}]},
    ]
    assert psn.calls[-2:] == [("limit", "psn-1", 480), ("block", "psn-1", "g1")]
    assert not plugin.sessions.get("psn-1").suspended


@pytest.mark.asyncio
async def test_new_state_isolates_child_failures(plugin, psn) -> None:
    psn.failures[("limit", "psn-1", 0)] = RequestError(None, "connection reset")

    result = await plugin.new_state(
        {"children": {"child-1": {"blocked": True}, "child-2": {"blocked": True}}}
    )

    failed, succeeded = result.results
    assert not failed.success
    assert "connection reset" in failed.error
    assert succeeded.success
    assert plugin.sessions.get("psn-2").suspended


@pytest.mark.asyncio
async def test_new_state_reports_malformed_state(plugin) -> None:
    recorder = EventRecorder(plugin)

    result = await plugin.new_state({"children": ["child-1"]})

    assert not result.success
    assert result.error
    assert isinstance(plugin.last_error, AttributeError)
    assert recorder.names() == ["error"]


@pytest.mark.asyncio
async def test_new_state_requires_initialization(psn, quota) -> None:
    plugin = PlayStationPlugin(quota, api_factory=lambda config: psn)

    result = await plugin.new_state({"children": {"child-1": {}}})

    assert not result.success
    assert result.error == "Plugin not initialized"


@pytest.mark.asyncio
async def test_monitor_logs_one_minute_for_active_accounts(plugin, psn, quota, clock) -> None:
    psn.play_times["psn-1"] = PlayTime("psn-1", 30, 90, True, "Astro Bot", None)

    await plugin.monitor_sessions()

    assert quota.logs == [
        {
            "childId": "child-1",
            "activities": [
                {
                    "activity": "gaming",
                    "time": 1,
                    "meta": {
                        "game": "Astro Bot",
                        "platform": "PlayStation",
                        "accountId": "psn-1",
                    },
                }
            ],
        }
    ]
    state = plugin.sessions.get("psn-1")
    assert state.last_active == clock.now
    assert state.current_game == "Astro Bot"
    assert plugin.sessions.get("psn-2") is None


@pytest.mark.asyncio
async def test_monitor_continues_after_account_error(plugin, psn, quota) -> None:
    psn.failures[("play_time", "psn-1")] = RequestError(502, "bad gateway")
    psn.play_times["psn-2"] = PlayTime("psn-2", 5, 5, True, None, None)

    await plugin.monitor_sessions()

    assert [log["childId"] for log in quota.logs] == ["child-2"]


@pytest.mark.asyncio
async def test_monitoring_loop_polls_on_interval(psn, quota, config_data) -> None:
    intervals: list[float] = []

    async def fast_sleep(seconds: float) -> None:
        intervals.append(seconds)
        await asyncio.sleep(0)

    config_data["pollInterval"] = 15
    psn.play_times["psn-1"] = PlayTime("psn-1", 1, 1, True, None, None)
    plugin = PlayStationPlugin(quota, api_factory=lambda config: psn, sleep=fast_sleep)
    await plugin.on_load(config_data)

    while len(quota.logs) < 2:
        await asyncio.sleep(0)
    await plugin.stop_monitoring()

    assert set(intervals) == {15.0}
    assert not plugin.monitoring
    await plugin.on_unload()


@pytest.mark.asyncio
async def test_queries_require_initialization(psn, quota) -> None:
    plugin = PlayStationPlugin(quota, api_factory=lambda config: psn)

    with pytest.raises(PlayStationPluginError, match="not initialized"):
        await plugin.list_child_accounts()
    with pytest.raises(PlayStationPluginError, match="not initialized"):
        await plugin.get_play_time("psn-1")


@pytest.mark.asyncio
async def test_play_time_query(plugin, psn) -> None:
    play_time = await plugin.get_play_time("psn-1")

    assert play_time.account_id == "psn-1"
    assert await plugin.list_child_accounts() == []
