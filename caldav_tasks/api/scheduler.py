"""Sync triggers.

Runs the sync engine on startup, on a recurring APScheduler interval, when
the active calendar changes and when connectivity returns.
"""

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from caldav_tasks.api.network import NetworkMonitor
from caldav_tasks.core.config import AppConfig
from caldav_tasks.core.store import TaskStore
from caldav_tasks.core.sync import SyncEngine

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "auto_sync"
NETWORK_JOB_ID = "network_probe"
NETWORK_PROBE_SECONDS = 60


class SyncScheduler:
    """Owns every automatic sync trigger for one engine/store pair."""

    def __init__(
        self,
        engine: SyncEngine,
        store: TaskStore,
        config: AppConfig,
        network: NetworkMonitor | None = None,
    ):
        self.engine = engine
        self.store = store
        self.config = config
        self.network = network
        self.scheduler = AsyncIOScheduler()
        self._running = False
        self._unsubscribe = None
        self._last_calendar_id = store.ui.active_calendar_id
        self._background: set[asyncio.Task] = set()

        if network is not None:
            network.on_online = self._on_online

    @property
    def is_running(self) -> bool:
        """Return True if the scheduler is actively running."""
        return self._running

    async def start(self) -> None:
        """Run the startup sync and install the recurring triggers."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        sync_config = self.config.sync
        if sync_config.auto_sync and sync_config.sync_interval > 0:
            self.scheduler.add_job(
                self.trigger_sync,
                trigger=IntervalTrigger(minutes=sync_config.sync_interval),
                id=SYNC_JOB_ID,
                replace_existing=True,
                name="Automatic sync",
            )
            logger.info(f"Auto-sync every {sync_config.sync_interval} minutes")

        if self.network is not None:
            self.scheduler.add_job(
                self.network.check,
                trigger=IntervalTrigger(seconds=NETWORK_PROBE_SECONDS),
                id=NETWORK_JOB_ID,
                replace_existing=True,
                name="Connectivity probe",
            )

        self._last_calendar_id = self.store.ui.active_calendar_id
        self._unsubscribe = self.store.subscribe(self._on_store_change)

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started")

        if sync_config.sync_on_startup and self.store.get_accounts():
            await self.trigger_sync()

    async def stop(self) -> None:
        """Stop the scheduler and cleanup."""
        if not self._running:
            return

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.scheduler.shutdown(wait=False)
        self._running = False

        for task in list(self._background):
            task.cancel()

        logger.info("Scheduler stopped")

    async def trigger_sync(self) -> bool:
        """Run a full sync unless offline or already syncing.

        Used by the interval job and by manual sync requests alike. Returns
        True when a sync actually ran.
        """
        if self.network is not None and not self.network.is_online:
            logger.debug("Skipping sync: offline")
            return False
        if self.engine.is_syncing:
            logger.debug("Skipping sync: already in progress")
            return False

        try:
            await self.engine.sync_all()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Scheduled sync failed: {exc}", exc_info=True)
        return True

    async def _on_online(self) -> None:
        logger.info("Back online, triggering sync...")
        await self.trigger_sync()

    def _on_store_change(self) -> None:
        calendar_id = self.store.ui.active_calendar_id
        if calendar_id == self._last_calendar_id:
            return
        self._last_calendar_id = calendar_id
        if calendar_id is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping active calendar sync")
            return

        task = loop.create_task(self.sync_active_calendar(calendar_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def sync_active_calendar(self, calendar_id: str) -> None:
        if self.network is not None and not self.network.is_online:
            return
        try:
            await self.engine.sync_calendar(calendar_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Failed to sync active calendar {calendar_id}: {exc}")

    async def wait_idle(self) -> None:
        """Wait for background calendar syncs started by selection changes."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
