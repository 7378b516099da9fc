"""Bidirectional sync between the task store and CalDAV servers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from caldav_tasks.core.ical import split_categories
from caldav_tasks.core.models import Account, Calendar, Task, utcnow
from caldav_tasks.core.store import TaskStore
from caldav_tasks.core.transport import TransportClient

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "You are offline. Changes will sync when you reconnect."

# Fields never copied from a pulled remote task onto the local one
_LOCAL_ONLY_FIELDS = {"id", "tags", "categories", "local_only"}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SyncPhase(str, Enum):
    IDLE = "idle"
    RECONNECTING = "reconnecting"
    SYNCING_CALENDARS = "syncing-calendars"
    SYNCING_TASKS = "syncing-tasks"


class NetworkStatus(Protocol):
    @property
    def is_online(self) -> bool: ...


@dataclass
class SyncStats:
    """Counters for one sync pass, in the direction of the change."""

    deleted_remote: int = 0
    created_remote: int = 0
    updated_remote: int = 0
    created_local: int = 0
    updated_local: int = 0
    deleted_local: int = 0
    errors: int = 0

    def merge(self, other: SyncStats) -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class SyncEngine:
    """Reconciles the local store with the remote collections of every account.

    Each calendar is synced in three ordered steps: pending deletions are
    drained, unsynced local tasks are pushed, then the remote state is pulled
    and merged. Conflicts are resolved last-writer-wins keyed on the local
    ``synced`` flag: a task with pending local edits is never overwritten by a
    pull.
    """

    def __init__(
        self,
        store: TaskStore,
        transport: TransportClient,
        network: NetworkStatus | None = None,
    ):
        self.store = store
        self.transport = transport
        self.network = network

        self.is_syncing = False
        self.phase = SyncPhase.IDLE
        self.last_sync_time: datetime | None = None
        self.last_sync_error: str | None = None
        self.last_stats = SyncStats()
        self.connection_states: dict[str, ConnectionState] = {}

    @property
    def is_online(self) -> bool:
        return self.network is None or self.network.is_online

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def _ensure_connected(self, account: Account) -> None:
        if self.transport.is_connected(account.id):
            self.connection_states[account.id] = ConnectionState.CONNECTED
            return
        self.connection_states[account.id] = ConnectionState.CONNECTING
        try:
            await self.transport.reconnect(account)
        except Exception:
            self.connection_states[account.id] = ConnectionState.DISCONNECTED
            raise
        self.connection_states[account.id] = ConnectionState.CONNECTED

    async def reconnect_accounts(self) -> None:
        """Reconnect every account that is not connected; failures are logged per account."""
        for account in self.store.get_accounts():
            if self.transport.is_connected(account.id):
                self.connection_states[account.id] = ConnectionState.CONNECTED
                continue
            try:
                await self._ensure_connected(account)
                logger.info(f"Reconnected to account: {account.name}")
            except Exception as e:
                logger.error(f"Failed to reconnect account {account.name}: {e}")

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    async def sync_calendars_for_account(self, account_id: str) -> list[Calendar] | None:
        """Reconcile the local calendar list of an account with the server's.

        New remote calendars are added, changed display metadata is copied and
        calendars gone from the server are removed together with their tasks.
        """
        account = self.store.get_account(account_id)
        if account is None:
            return None

        await self._ensure_connected(account)

        logger.info(f"Fetching calendars for account: {account.name}")
        remote_calendars = await self.transport.fetch_calendars(account_id)
        logger.debug(f"Found {len(remote_calendars)} calendars on server")

        local_by_id = {c.id: c for c in account.calendars}
        remote_ids = {c.id for c in remote_calendars}
        updated: list[Calendar] = []

        for remote in remote_calendars:
            local = local_by_id.get(remote.id)
            if local is None:
                logger.info(f"New calendar from server: {remote.display_name}")
                updated.append(replace(remote, account_id=account_id))
                continue
            changed = replace(
                local,
                display_name=remote.display_name,
                color=remote.color,
                ctag=remote.ctag,
                sync_token=remote.sync_token,
            )
            if changed != local:
                logger.info(f"Updating calendar properties: {remote.display_name}")
            updated.append(changed)

        for local in account.calendars:
            if local.id not in remote_ids:
                logger.info(f"Calendar deleted on server: {local.display_name}")
                self.store.remove_remote_calendar(account_id, local.id)

        self.store.set_calendars(account_id, updated)
        return updated

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _resolve_tags(self, categories: str | None) -> list[str]:
        return list(dict.fromkeys(self.store.ensure_tag(name).id for name in split_categories(categories)))

    async def _drain_pending_deletions(self, account: Account, calendar_id: str, stats: SyncStats) -> None:
        deletions = self.store.get_pending_deletions(calendar_id)
        if deletions:
            logger.info(f"Found {len(deletions)} pending deletions for calendar")
        for deletion in deletions:
            try:
                logger.debug(f"Deleting task from server: {deletion.href}")
                if await self.transport.delete_task(account.id, deletion.href):
                    stats.deleted_remote += 1
                else:
                    logger.warning(f"Server did not confirm deletion of {deletion.href}")
            except Exception as e:
                logger.error(f"Failed to delete task from server: {e}")
                stats.errors += 1
            finally:
                # Cleared even on failure: the task may already be gone server-side
                self.store.clear_pending_deletion(deletion.uid)

    def _record_upload(self, sent: Task, href: str, etag: str | None) -> None:
        """Store the server's href/etag for an uploaded task.

        The store may have changed while the request was in flight. A task
        edited meanwhile keeps its edit and stays unsynced; a task deleted or
        moved to another calendar meanwhile has the uploaded copy queued for
        deletion.
        """
        live = self.store.get_task(sent.id)
        if live is None or live.calendar_id != sent.calendar_id:
            logger.debug(f"Task {sent.title} was removed from its calendar during upload")
            self.store.record_pending_deletion(replace(sent, href=href))
            return
        if live == sent:
            self.store.update_task(
                sent.id,
                href=href,
                etag=etag,
                synced=True,
                local_only=False,
                modified_at=sent.modified_at,
            )
            return
        logger.debug(f"Task {sent.title} changed during upload, keeping it unsynced")
        self.store.update_task(
            sent.id,
            href=href,
            etag=etag,
            synced=False,
            local_only=False,
            modified_at=live.modified_at,
        )

    async def _push(self, account: Account, calendar: Calendar, task: Task) -> str | None:
        """Upload one task; returns "created"/"updated" or None if the server declined."""
        wire = self.store.wire_task(task)
        if task.href:
            logger.debug(f"Updating task on server: {task.title}")
            result = await self.transport.update_task(account.id, wire)
            if result is None:
                return None
            self._record_upload(task, task.href, result.etag)
            return "updated"

        logger.debug(f"Creating task on server: {task.title}")
        created = await self.transport.create_task(account.id, calendar, wire)
        if created is None:
            return None
        self._record_upload(task, created.href, created.etag)
        return "created"

    async def _push_unsynced(self, account: Account, calendar: Calendar, stats: SyncStats) -> None:
        unsynced = [t for t in self.store.get_tasks_by_calendar(calendar.id) if not t.synced]
        if unsynced:
            logger.info(f"Found {len(unsynced)} unsynced local tasks to push")
        for task in unsynced:
            try:
                outcome = await self._push(account, calendar, task)
            except Exception as e:
                logger.error(f"Failed to push task {task.title}: {e}")
                stats.errors += 1
                continue
            if outcome == "created":
                stats.created_remote += 1
            elif outcome == "updated":
                stats.updated_remote += 1
            else:
                logger.warning(f"Server rejected task {task.title}")
                stats.errors += 1

    def _merge_remote(self, remote: Task, stats: SyncStats) -> None:
        local = next(
            (t for t in self.store.get_tasks_by_calendar(remote.calendar_id) if t.uid == remote.uid),
            None,
        )
        if local is None:
            logger.debug(f"Adding new task from server: {remote.title}")
            self.store.insert_task(
                replace(
                    remote,
                    tags=self._resolve_tags(remote.categories),
                    categories=None,
                    synced=True,
                    local_only=False,
                )
            )
            stats.created_local += 1
            return

        if not local.synced:
            if remote.etag != local.etag:
                logger.debug(f"Skipping server update for {remote.title}: local changes pending")
            return

        remote_tags = self._resolve_tags(remote.categories)
        if remote.etag != local.etag:
            changes: dict[str, Any] = {
                f.name: getattr(remote, f.name)
                for f in fields(Task)
                if f.name not in _LOCAL_ONLY_FIELDS
            }
            changes.update(tags=remote_tags, synced=True)
            logger.debug(f"Updating task from server: {remote.title} (sort_order: {remote.sort_order})")
            self.store.update_task(local.id, **changes)
            stats.updated_local += 1
        elif set(remote_tags) != set(local.tags):
            logger.debug(f"Syncing tags for task: {remote.title}")
            self.store.update_task(local.id, tags=remote_tags, synced=True, modified_at=local.modified_at)
            stats.updated_local += 1

    async def sync_calendar(self, calendar_id: str) -> SyncStats:
        """Sync one calendar: drain deletions, push local edits, pull remote state."""
        stats = SyncStats()
        account = self.store.find_account_for_calendar(calendar_id)
        calendar = self.store.get_calendar(calendar_id)
        if account is None or calendar is None:
            logger.error(f"Calendar not found in any account: {calendar_id}")
            return stats

        await self._ensure_connected(account)

        await self._drain_pending_deletions(account, calendar_id, stats)
        await self._push_unsynced(account, calendar, stats)

        remote_tasks = await self.transport.fetch_tasks(account.id, calendar)
        logger.info(f"Fetched {len(remote_tasks)} tasks from {calendar.display_name}")

        doomed = {d.uid for d in self.store.get_pending_deletions(calendar_id)}
        for remote in remote_tasks:
            if remote.uid in doomed:
                continue
            try:
                self._merge_remote(replace(remote, account_id=account.id, calendar_id=calendar_id), stats)
            except Exception as e:
                logger.error(f"Failed to merge task {remote.title}: {e}")
                stats.errors += 1

        remote_uids = {t.uid for t in remote_tasks}
        for local in self.store.get_tasks_by_calendar(calendar_id):
            if local.synced and local.uid not in remote_uids:
                logger.debug(f"Task deleted on server: {local.title}")
                self.store.remove_synced_task(local.id)
                stats.deleted_local += 1

        logger.info(f"Calendar {calendar.display_name} synced: {stats.to_dict()}")
        return stats

    async def sync_all(self) -> SyncStats | None:
        """Full sync of every account; returns aggregate stats or None if skipped."""
        if not self.is_online:
            logger.info("Skipping sync: offline")
            self.last_sync_error = OFFLINE_MESSAGE
            return None
        if self.is_syncing:
            logger.debug("Sync already in progress, skipping")
            return None

        self.is_syncing = True
        self.last_sync_error = None
        total = SyncStats()
        logger.info("Starting full sync")

        try:
            self.phase = SyncPhase.RECONNECTING
            await self.reconnect_accounts()

            self.phase = SyncPhase.SYNCING_CALENDARS
            for account in self.store.get_accounts():
                try:
                    await self.sync_calendars_for_account(account.id)
                except Exception as e:
                    logger.error(f"Failed to sync calendars for {account.name}: {e}")
                    total.errors += 1

            self.phase = SyncPhase.SYNCING_TASKS
            for account in self.store.get_accounts():
                account_ok = True
                for calendar in account.calendars:
                    try:
                        total.merge(await self.sync_calendar(calendar.id))
                    except Exception as e:
                        logger.error(f"Failed to sync calendar {calendar.display_name}: {e}")
                        total.errors += 1
                        account_ok = False
                if account_ok:
                    self.store.update_account(account.id, last_sync=utcnow())
        except Exception as e:
            self.last_sync_error = str(e) or "Sync failed"
            logger.error(f"Sync error: {e}", exc_info=True)
        finally:
            self.phase = SyncPhase.IDLE
            self.is_syncing = False
            self.last_sync_time = utcnow()

        self.last_stats = total
        logger.info(f"Sync completed: {total.to_dict()}")
        return total

    # ------------------------------------------------------------------
    # Single-task operations
    # ------------------------------------------------------------------

    async def push_task(self, task: Task) -> bool:
        """Immediately upload one task. Returns True when the server accepted it."""
        account = self.store.get_account(task.account_id)
        calendar = self.store.get_calendar(task.calendar_id) if account else None
        if account is None or calendar is None:
            return False
        await self._ensure_connected(account)
        return await self._push(account, calendar, task) is not None

    async def remove_task_from_server(self, task: Task) -> bool:
        """Delete one task on the server; a task never uploaded counts as removed."""
        if not task.href:
            return True
        account = self.store.get_account(task.account_id)
        if account is None:
            return False
        await self._ensure_connected(account)
        return await self.transport.delete_task(account.id, task.href, task.etag)
