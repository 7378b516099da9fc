# tests/fakes.py

from __future__ import annotations

from dataclasses import replace
from typing import Callable

from caldav_tasks.core.errors import TransportError
from caldav_tasks.core.models import Account, Calendar, Task, new_id
from caldav_tasks.core.transport import CreateResult, UpdateResult


class FakeTransport:
    """
    In-memory CalDAV server for sync engine tests.

    - Keeps remote tasks per calendar id
    - Records every call for assertions
    - Hands out sequential hrefs/etags on create: /h1 + e1, /h2 + e2, ...
    """

    def __init__(self) -> None:
        self.connected: set[str] = set()
        self.failing_accounts: set[str] = set()
        self.calendars: dict[str, list[Calendar]] = {}
        self.remote_tasks: dict[str, list[Task]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_deletes = False
        self.reject_updates = False
        self.fail_fetch_calendars = False
        # Called with the uploaded task before create/update returns
        self.on_upload: Callable[[Task], None] | None = None
        self._counter = 0

    def is_connected(self, account_id: str) -> bool:
        return account_id in self.connected

    async def reconnect(self, account: Account) -> None:
        self.calls.append(("reconnect", account.id))
        if account.id in self.failing_accounts:
            raise TransportError(f"cannot reach {account.server_url}")
        self.connected.add(account.id)

    async def fetch_calendars(self, account_id: str) -> list[Calendar]:
        self.calls.append(("fetch_calendars", account_id))
        if self.fail_fetch_calendars:
            raise TransportError("PROPFIND failed")
        return list(self.calendars.get(account_id, []))

    async def fetch_tasks(self, account_id: str, calendar: Calendar) -> list[Task]:
        self.calls.append(("fetch_tasks", calendar.id))
        # Decoding on the client side always yields fresh local ids
        return [replace(t, id=new_id()) for t in self.remote_tasks.get(calendar.id, [])]

    async def create_task(self, account_id: str, calendar: Calendar, task: Task) -> CreateResult | None:
        self.calls.append(("create_task", task.uid))
        self._counter += 1
        result = CreateResult(href=f"/h{self._counter}", etag=f"e{self._counter}")
        self.remote_tasks.setdefault(calendar.id, []).append(
            replace(task, href=result.href, etag=result.etag, synced=True)
        )
        if self.on_upload:
            self.on_upload(task)
        return result

    async def update_task(self, account_id: str, task: Task) -> UpdateResult | None:
        self.calls.append(("update_task", task.uid))
        if self.reject_updates:
            return None
        etag = f"{task.etag}+"
        for calendar_id, tasks in self.remote_tasks.items():
            self.remote_tasks[calendar_id] = [
                replace(task, etag=etag, synced=True) if t.uid == task.uid else t for t in tasks
            ]
        if self.on_upload:
            self.on_upload(task)
        return UpdateResult(etag=etag)

    async def delete_task(self, account_id: str, href: str, etag: str | None = None) -> bool:
        self.calls.append(("delete_task", href))
        if self.fail_deletes:
            raise TransportError("DELETE timed out")
        for calendar_id, tasks in self.remote_tasks.items():
            self.remote_tasks[calendar_id] = [t for t in tasks if t.href != href]
        return True

    def called(self, name: str) -> list[str]:
        return [arg for call, arg in self.calls if call == name]


class FakeNetwork:
    """Network monitor stand-in with a settable online flag."""

    def __init__(self, online: bool = True) -> None:
        self.is_online = online
        self.on_online = None
        self.on_offline = None
        self.checks = 0

    async def check(self) -> bool:
        self.checks += 1
        return self.is_online


def remote_task(title: str, uid: str, etag: str = "r1", **fields) -> Task:
    """A task as the server would return it."""
    return Task(title=title, uid=uid, href=f"/{uid}.ics", etag=etag, synced=True, **fields)
