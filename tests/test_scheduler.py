# tests/test_scheduler.py

from __future__ import annotations

import httpx

from caldav_tasks.api.network import NetworkMonitor
from caldav_tasks.api.scheduler import NETWORK_JOB_ID, SYNC_JOB_ID, SyncScheduler
from caldav_tasks.core.config import AppConfig, SyncConfig
from caldav_tasks.core.models import Account
from caldav_tasks.core.store import TaskStore
from caldav_tasks.core.sync import SyncEngine

from .conftest import HOME_CALENDAR_ID
from .fakes import FakeNetwork, FakeTransport


def _config(**sync) -> AppConfig:
    return AppConfig(sync=SyncConfig(**sync))


async def test_start_runs_startup_sync_and_installs_jobs(
    engine: SyncEngine, store: TaskStore, account: Account, transport: FakeTransport, network: FakeNetwork
) -> None:
    scheduler = SyncScheduler(engine, store, _config(sync_interval=5), network)

    await scheduler.start()
    try:
        assert scheduler.is_running
        assert scheduler.scheduler.get_job(SYNC_JOB_ID) is not None
        assert scheduler.scheduler.get_job(NETWORK_JOB_ID) is not None
        assert transport.called("fetch_tasks") == [HOME_CALENDAR_ID]
    finally:
        await scheduler.stop()

    assert not scheduler.is_running


async def test_zero_interval_disables_timer(
    engine: SyncEngine, store: TaskStore, account: Account, transport: FakeTransport
) -> None:
    scheduler = SyncScheduler(engine, store, _config(sync_interval=0, sync_on_startup=False))

    await scheduler.start()
    try:
        assert scheduler.scheduler.get_job(SYNC_JOB_ID) is None
        assert scheduler.scheduler.get_job(NETWORK_JOB_ID) is None
        assert transport.calls == []
    finally:
        await scheduler.stop()


async def test_trigger_sync_respects_offline_and_busy(
    engine: SyncEngine, store: TaskStore, account: Account, transport: FakeTransport, network: FakeNetwork
) -> None:
    scheduler = SyncScheduler(engine, store, _config(), network)

    network.is_online = False
    assert await scheduler.trigger_sync() is False

    network.is_online = True
    engine.is_syncing = True
    assert await scheduler.trigger_sync() is False

    engine.is_syncing = False
    assert await scheduler.trigger_sync() is True
    assert transport.called("reconnect") == [account.id]


async def test_selecting_a_calendar_syncs_it(
    engine: SyncEngine, store: TaskStore, account: Account, transport: FakeTransport
) -> None:
    scheduler = SyncScheduler(engine, store, _config(auto_sync=False, sync_on_startup=False))
    await scheduler.start()
    try:
        store.set_active_calendar(HOME_CALENDAR_ID)
        store.set_search_query("unrelated change")
        await scheduler.wait_idle()
    finally:
        await scheduler.stop()

    assert transport.called("fetch_tasks") == [HOME_CALENDAR_ID]


async def test_reconnect_triggers_sync(
    engine: SyncEngine, store: TaskStore, account: Account, transport: FakeTransport, network: FakeNetwork
) -> None:
    SyncScheduler(engine, store, _config(), network)

    await network.on_online()

    assert transport.called("fetch_tasks") == [HOME_CALENDAR_ID]


async def test_network_monitor_fires_on_transitions() -> None:
    responses = iter([None, 204, 204])
    events: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(responses)
        if status is None:
            raise httpx.ConnectError("network unreachable", request=request)
        return httpx.Response(status)

    async def went_online() -> None:
        events.append("online")

    monitor = NetworkMonitor(
        "https://probe.example.com/generate_204",
        on_online=went_online,
        on_offline=lambda: events.append("offline"),
        transport=httpx.MockTransport(handler),
    )

    assert monitor.is_online
    assert await monitor.check() is False
    assert not monitor.is_online
    assert await monitor.check() is True
    assert await monitor.check() is True

    assert events == ["offline", "online"]
