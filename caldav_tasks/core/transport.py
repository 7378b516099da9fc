"""Interface between the sync engine and a CalDAV server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from caldav_tasks.core.models import Account, Calendar, Task


@dataclass
class CreateResult:
    href: str
    etag: str


@dataclass
class UpdateResult:
    etag: str


class TransportClient(Protocol):
    """Per-account CalDAV operations used by :class:`~caldav_tasks.core.sync.SyncEngine`.

    Connection and authentication problems raise
    :class:`~caldav_tasks.core.errors.TransportError`. Per-request failures
    surface as ``None``/``False`` results.
    """

    def is_connected(self, account_id: str) -> bool: ...

    async def reconnect(self, account: Account) -> None: ...

    async def fetch_calendars(self, account_id: str) -> list[Calendar]: ...

    async def fetch_tasks(self, account_id: str, calendar: Calendar) -> list[Task]: ...

    async def create_task(
        self, account_id: str, calendar: Calendar, task: Task
    ) -> CreateResult | None: ...

    async def update_task(self, account_id: str, task: Task) -> UpdateResult | None: ...

    async def delete_task(self, account_id: str, href: str, etag: str | None = None) -> bool: ...
