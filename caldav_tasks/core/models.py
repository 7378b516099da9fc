"""Domain model for tasks, tags, accounts and calendars.

Every entity converts to and from plain JSON-safe dictionaries so the whole
store can be persisted as a single snapshot.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


class Priority(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SortMode(str, Enum):
    MANUAL = "manual"
    DUE_DATE = "due-date"
    START_DATE = "start-date"
    PRIORITY = "priority"
    TITLE = "title"
    MODIFIED = "modified"
    CREATED = "created"
    SMART = "smart"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ServerType(str, Enum):
    RUSTICAL = "rustical"
    RADICALE = "radicale"
    BAIKAL = "baikal"
    NEXTCLOUD = "nextcloud"
    GENERIC = "generic"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _dt_to_json(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_json(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime/date)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Accept camelCase keys as written by the desktop app's JSON export."""
    return {_CAMEL_RE.sub("_", key).lower(): value for key, value in data.items()}


@dataclass
class SortConfig:
    mode: SortMode = SortMode.MANUAL
    direction: SortDirection = SortDirection.ASC

    @property
    def multiplier(self) -> int:
        return 1 if self.direction == SortDirection.ASC else -1

    def to_dict(self) -> dict[str, str]:
        return {"mode": self.mode.value, "direction": self.direction.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SortConfig:
        if not data:
            return cls()
        return cls(
            mode=SortMode(data.get("mode", SortMode.MANUAL.value)),
            direction=SortDirection(data.get("direction", SortDirection.ASC.value)),
        )


@dataclass
class Subtask:
    """Entry of the legacy flat checklist (superseded by parent_uid)."""

    title: str
    completed: bool = False
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subtask:
        return cls(
            id=str(data.get("id") or new_id()),
            title=str(data.get("title", "")),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class Task:
    """A to-do item.

    ``id`` is the store-local identity, ``uid`` the CalDAV identity shared
    across servers and devices. ``categories`` is the raw CATEGORIES text
    received from the wire; ``tags`` holds resolved tag ids.
    """

    title: str
    uid: str = field(default_factory=new_id)
    id: str = field(default_factory=new_id)
    description: str = ""
    completed: bool = False
    completed_at: datetime | None = None
    priority: Priority = Priority.NONE
    tags: list[str] = field(default_factory=list)
    categories: str | None = None
    start_date: datetime | None = None
    start_date_all_day: bool = False
    due_date: datetime | None = None
    due_date_all_day: bool = False
    created_at: datetime = field(default_factory=utcnow)
    modified_at: datetime = field(default_factory=utcnow)
    subtasks: list[Subtask] = field(default_factory=list)
    parent_uid: str | None = None
    is_collapsed: bool = False
    sort_order: int = 0
    account_id: str = ""
    calendar_id: str = ""
    synced: bool = False
    local_only: bool = False
    href: str | None = None
    etag: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "uid": self.uid,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "completed_at": _dt_to_json(self.completed_at),
            "priority": self.priority.value,
            "tags": list(self.tags),
            "categories": self.categories,
            "start_date": _dt_to_json(self.start_date),
            "start_date_all_day": self.start_date_all_day,
            "due_date": _dt_to_json(self.due_date),
            "due_date_all_day": self.due_date_all_day,
            "created_at": _dt_to_json(self.created_at),
            "modified_at": _dt_to_json(self.modified_at),
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
            "parent_uid": self.parent_uid,
            "is_collapsed": self.is_collapsed,
            "sort_order": self.sort_order,
            "account_id": self.account_id,
            "calendar_id": self.calendar_id,
            "synced": self.synced,
            "local_only": self.local_only,
            "href": self.href,
            "etag": self.etag,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        data = _snake_keys(data)
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}

        # Older exports kept the raw CATEGORIES text in category_id
        if "categories" not in values and data.get("category_id"):
            values["categories"] = data["category_id"]

        for key in ("completed_at", "start_date", "due_date"):
            values[key] = _dt_from_json(values.get(key))
        for key in ("created_at", "modified_at"):
            values[key] = _dt_from_json(values.get(key)) or utcnow()

        values["priority"] = Priority(values.get("priority") or Priority.NONE.value)
        values["subtasks"] = [Subtask.from_dict(s) for s in values.get("subtasks") or []]
        values["tags"] = list(values.get("tags") or [])
        values["title"] = str(values.get("title") or "Untitled Task")
        values["description"] = str(values.get("description") or "")
        values["sort_order"] = int(values.get("sort_order") or 0)
        for key in ("uid", "id"):
            if not values.get(key):
                values[key] = new_id()
        return cls(**values)


@dataclass
class Tag:
    name: str
    color: str = "#3b82f6"
    id: str = field(default_factory=new_id)
    icon: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color, "icon": self.icon}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tag:
        return cls(
            id=str(data.get("id") or new_id()),
            name=str(data.get("name", "")),
            color=str(data.get("color") or "#3b82f6"),
            icon=data.get("icon"),
        )


@dataclass
class Calendar:
    """A CalDAV collection. ``id`` is the collection URL assigned by the server."""

    id: str
    display_name: str
    url: str
    account_id: str
    ctag: str | None = None
    sync_token: str | None = None
    color: str | None = None
    icon: str | None = None
    supported_components: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "url": self.url,
            "account_id": self.account_id,
            "ctag": self.ctag,
            "sync_token": self.sync_token,
            "color": self.color,
            "icon": self.icon,
            "supported_components": self.supported_components,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Calendar:
        data = _snake_keys(data)
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("display_name") or "Tasks"),
            url=str(data.get("url") or ""),
            account_id=str(data.get("account_id") or ""),
            ctag=data.get("ctag"),
            sync_token=data.get("sync_token"),
            color=data.get("color"),
            icon=data.get("icon"),
            supported_components=data.get("supported_components"),
        )


@dataclass
class Account:
    name: str
    server_url: str
    username: str
    password: str = ""
    server_type: ServerType = ServerType.RUSTICAL
    calendars: list[Calendar] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    last_sync: datetime | None = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "server_url": self.server_url,
            "username": self.username,
            "password": self.password,
            "server_type": self.server_type.value,
            "calendars": [calendar.to_dict() for calendar in self.calendars],
            "last_sync": _dt_to_json(self.last_sync),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Account:
        data = _snake_keys(data)
        return cls(
            id=str(data.get("id") or new_id()),
            name=str(data.get("name") or "New Account"),
            server_url=str(data.get("server_url") or ""),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            server_type=ServerType(data.get("server_type") or ServerType.RUSTICAL.value),
            calendars=[Calendar.from_dict(c) for c in data.get("calendars") or []],
            last_sync=_dt_from_json(data.get("last_sync")),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class PendingDeletion:
    """A server-side task deleted locally whose remote DELETE is still owed."""

    uid: str
    href: str
    account_id: str
    calendar_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "uid": self.uid,
            "href": self.href,
            "account_id": self.account_id,
            "calendar_id": self.calendar_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingDeletion:
        data = _snake_keys(data)
        return cls(
            uid=str(data["uid"]),
            href=str(data["href"]),
            account_id=str(data.get("account_id") or ""),
            calendar_id=str(data.get("calendar_id") or ""),
        )


@dataclass
class UIState:
    active_account_id: str | None = None
    active_calendar_id: str | None = None
    active_tag_id: str | None = None
    selected_task_id: str | None = None
    search_query: str = ""
    sort_config: SortConfig = field(default_factory=SortConfig)
    show_completed_tasks: bool = True
    is_editor_open: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_account_id": self.active_account_id,
            "active_calendar_id": self.active_calendar_id,
            "active_tag_id": self.active_tag_id,
            "selected_task_id": self.selected_task_id,
            "search_query": self.search_query,
            "sort_config": self.sort_config.to_dict(),
            "show_completed_tasks": self.show_completed_tasks,
            "is_editor_open": self.is_editor_open,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UIState:
        if not data:
            return cls()
        return cls(
            active_account_id=data.get("active_account_id"),
            active_calendar_id=data.get("active_calendar_id"),
            active_tag_id=data.get("active_tag_id"),
            selected_task_id=data.get("selected_task_id"),
            search_query=str(data.get("search_query") or ""),
            sort_config=SortConfig.from_dict(data.get("sort_config")),
            show_completed_tasks=bool(data.get("show_completed_tasks", True)),
            is_editor_open=bool(data.get("is_editor_open", False)),
        )


@dataclass
class FlattenedTask:
    """One row of the visible task tree, annotated with its nesting depth."""

    id: str
    uid: str
    title: str
    depth: int
    parent_uid: str | None = None
    ancestor_ids: list[str] = field(default_factory=list)
    sort_order: int = 0


@dataclass
class DataSnapshot:
    tasks: list[Task] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)
    accounts: list[Account] = field(default_factory=list)
    pending_deletions: list[PendingDeletion] = field(default_factory=list)
    ui: UIState = field(default_factory=UIState)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self.tasks],
            "tags": [tag.to_dict() for tag in self.tags],
            "accounts": [account.to_dict() for account in self.accounts],
            "pending_deletions": [d.to_dict() for d in self.pending_deletions],
            "ui": self.ui.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataSnapshot:
        return cls(
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            tags=[Tag.from_dict(t) for t in data.get("tags") or []],
            accounts=[Account.from_dict(a) for a in data.get("accounts") or []],
            pending_deletions=[
                PendingDeletion.from_dict(d) for d in data.get("pending_deletions") or []
            ],
            ui=UIState.from_dict(data.get("ui")),
        )
