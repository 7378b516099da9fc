"""Conversion between Task objects and iCalendar VTODO text.

Vendor extensions written alongside the RFC 5545 properties:

- ``X-APPLE-SORT-ORDER``: manual list position (integer, shared with Apple
  Reminders and Nextcloud Tasks)
- ``X-APPLE-COLLAPSED``: ``1`` when the task's children are collapsed
- ``X-CALDAV-TASKS-SUBTASKS``: legacy checklist as a JSON array
"""

import json
import logging
import math
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any

from icalendar import Calendar
from icalendar import Todo as VTodo

from caldav_tasks.core.models import Priority, Subtask, Task, new_id, utcnow

logger = logging.getLogger(__name__)

PRODID = "-//CalDAV Tasks//EN"

# Apple Reminders stores X-APPLE-SORT-ORDER as seconds since this instant.
APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

SORT_ORDER_PROP = "X-APPLE-SORT-ORDER"
COLLAPSED_PROP = "X-APPLE-COLLAPSED"
SUBTASKS_PROP = "X-CALDAV-TASKS-SUBTASKS"

_PRIORITY_TO_ICAL: dict[Priority, int] = {
    Priority.HIGH: 1,
    Priority.MEDIUM: 5,
    Priority.LOW: 9,
    Priority.NONE: 0,
}


def to_apple_epoch(moment: datetime, epoch: datetime = APPLE_EPOCH) -> int:
    """Whole seconds elapsed between ``epoch`` and ``moment`` (floored).

    Used as the fallback manual sort order for tasks coming from clients that
    never wrote X-APPLE-SORT-ORDER, and to seed sort orders of new local
    tasks, so both land in the same numeric space.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return math.floor((moment - epoch).total_seconds())


def from_apple_epoch(seconds: int, epoch: datetime = APPLE_EPOCH) -> datetime:
    return datetime.fromtimestamp(epoch.timestamp() + seconds, tz=timezone.utc)


def priority_to_ical(priority: Priority) -> int:
    return _PRIORITY_TO_ICAL[priority]


def priority_from_ical(value: int) -> Priority:
    """Collapse the 1-9 iCalendar scale into four buckets.

    0 is undefined, 1-4 high, 5 medium, anything else low.
    """
    if value == 0:
        return Priority.NONE
    if 1 <= value <= 4:
        return Priority.HIGH
    if value == 5:
        return Priority.MEDIUM
    return Priority.LOW


def generate_ical_uid() -> str:
    return f"{uuid.uuid4()}@caldav-tasks"


def split_categories(raw: str | None) -> list[str]:
    """Split a CATEGORIES value on commas, dropping blanks."""
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _add_date(vtodo: VTodo, name: str, value: datetime, all_day: bool) -> None:
    if all_day:
        vtodo.add(name, value.date())
    else:
        vtodo.add(name, _utc(value))


def build_vtodo(task: Task) -> VTodo:
    """Build the VTODO component for ``task``."""
    vtodo = VTodo()

    vtodo.add("uid", task.uid)
    vtodo.add("dtstamp", utcnow())
    vtodo.add("created", _utc(task.created_at))
    vtodo.add("last-modified", _utc(task.modified_at))

    vtodo.add("summary", task.title)
    if task.description:
        vtodo.add("description", task.description)

    vtodo.add("status", "COMPLETED" if task.completed else "NEEDS-ACTION")
    if task.completed:
        vtodo.add("completed", _utc(task.completed_at or utcnow()))

    vtodo.add("priority", priority_to_ical(task.priority))

    if task.start_date:
        _add_date(vtodo, "dtstart", task.start_date, task.start_date_all_day)
    if task.due_date:
        _add_date(vtodo, "due", task.due_date, task.due_date_all_day)

    vtodo.add(SORT_ORDER_PROP, str(task.sort_order))

    categories = split_categories(task.categories)
    if categories:
        vtodo.add("categories", categories)

    if task.parent_uid:
        vtodo.add("related-to", task.parent_uid, parameters={"RELTYPE": "PARENT"})

    if task.is_collapsed:
        vtodo.add(COLLAPSED_PROP, "1")

    if task.subtasks:
        vtodo.add(SUBTASKS_PROP, json.dumps([s.to_dict() for s in task.subtasks]))

    return vtodo


def new_vcalendar() -> Calendar:
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    return cal


def task_to_vtodo(task: Task) -> str:
    """Serialize a task as a VCALENDAR holding a single VTODO."""
    cal = new_vcalendar()
    cal.add_component(build_vtodo(task))
    return cal.to_ical().decode("utf-8")


def _first(component: Any, name: str) -> Any:
    value = component.get(name)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _as_datetime(prop: Any) -> tuple[datetime | None, bool]:
    """Return (datetime, is_all_day) for a date-ish property."""
    if prop is None or not hasattr(prop, "dt"):
        return None, False
    value = prop.dt
    if isinstance(value, datetime):
        # Floating times are read as local wall-clock time
        return (value if value.tzinfo else value.astimezone()), False
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc), True
    return None, False


def _categories_text(value: Any) -> str | None:
    if value is None:
        return None
    items = value if isinstance(value, list) else [value]
    names: list[str] = []
    for item in items:
        cats = getattr(item, "cats", None)
        if cats is None:
            cats = str(item).split(",")
        names.extend(str(cat).strip() for cat in cats)
    text = ",".join(name for name in names if name)
    return text or None


def _parent_uid(vtodo: VTodo) -> str | None:
    """First RELATED-TO whose RELTYPE is PARENT or absent."""
    related = vtodo.get("RELATED-TO")
    if related is None:
        return None
    for prop in related if isinstance(related, list) else [related]:
        params = getattr(prop, "params", {}) or {}
        reltype = params.get("RELTYPE")
        if not reltype or str(reltype).upper() == "PARENT":
            return str(prop)
    return None


def _subtasks(raw: Any) -> list[Subtask]:
    if raw is None:
        return []
    try:
        data = json.loads(str(raw))
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return [Subtask.from_dict(item) for item in data if isinstance(item, dict)]


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _sort_order(raw: Any, created: datetime) -> int:
    # Leading digits win, so "12.0" and "12abc" both read as 12
    match = _LEADING_INT.match(str(raw)) if raw is not None else None
    if match:
        return int(match.group(1))
    return to_apple_epoch(created)


def _priority(raw: Any) -> Priority:
    try:
        return priority_from_ical(int(raw or 0))
    except (TypeError, ValueError):
        return Priority.NONE


def component_to_task(
    vtodo: VTodo,
    account_id: str = "",
    calendar_id: str = "",
    href: str | None = None,
    etag: str | None = None,
) -> Task:
    """Map a parsed VTODO component onto a fresh Task."""
    uid = _first(vtodo, "UID")
    summary = _first(vtodo, "SUMMARY")
    description = _first(vtodo, "DESCRIPTION")
    status = str(_first(vtodo, "STATUS") or "NEEDS-ACTION").upper()

    created, _ = _as_datetime(_first(vtodo, "CREATED"))
    created = created or utcnow()
    modified, _ = _as_datetime(_first(vtodo, "LAST-MODIFIED"))
    completed_at, _ = _as_datetime(_first(vtodo, "COMPLETED"))
    start, start_all_day = _as_datetime(_first(vtodo, "DTSTART"))
    due, due_all_day = _as_datetime(_first(vtodo, "DUE"))

    return Task(
        id=new_id(),
        uid=str(uid) if uid else new_id(),
        etag=etag,
        href=href,
        title=str(summary) if summary else "Untitled Task",
        description=str(description) if description else "",
        completed=status == "COMPLETED",
        completed_at=completed_at,
        priority=_priority(_first(vtodo, "PRIORITY")),
        categories=_categories_text(vtodo.get("CATEGORIES")),
        start_date=start,
        start_date_all_day=start_all_day,
        due_date=due,
        due_date_all_day=due_all_day,
        created_at=created,
        modified_at=modified or utcnow(),
        subtasks=_subtasks(_first(vtodo, SUBTASKS_PROP)),
        parent_uid=_parent_uid(vtodo),
        is_collapsed=str(_first(vtodo, COLLAPSED_PROP) or "") == "1",
        sort_order=_sort_order(_first(vtodo, SORT_ORDER_PROP), created),
        account_id=account_id,
        calendar_id=calendar_id,
        synced=True,
    )


def vtodo_to_task(
    ical_text: str,
    account_id: str,
    calendar_id: str,
    href: str | None = None,
    etag: str | None = None,
) -> Task | None:
    """Parse the first VTODO of ``ical_text``.

    Returns None when the text is not valid iCalendar or holds no VTODO.
    """
    try:
        cal = Calendar.from_ical(ical_text)
        vtodos = cal.walk("VTODO")
        if not vtodos:
            logger.warning("No VTODO component found")
            return None
        return component_to_task(vtodos[0], account_id, calendar_id, href, etag)
    except Exception as e:
        logger.error(f"Failed to parse VTODO: {e}")
        return None


def parse_ics_file(ics_content: str) -> list[dict[str, Any]]:
    """Extract every VTODO of an .ics bundle as a partial task record.

    Records carry no account or calendar and are marked unsynced; the caller
    assigns a destination.
    """
    try:
        cal = Calendar.from_ical(ics_content)
        records = []
        for vtodo in cal.walk("VTODO"):
            record = component_to_task(vtodo).to_dict()
            for key in ("account_id", "calendar_id", "href", "etag"):
                record.pop(key, None)
            record["synced"] = False
            records.append(record)
        return records
    except Exception as e:
        logger.error(f"Failed to parse ICS file: {e}")
        return []


def looks_like_task_json(data: Any) -> bool:
    """True for a non-empty array whose first element has a title."""
    return (
        isinstance(data, list)
        and len(data) > 0
        and isinstance(data[0], dict)
        and "title" in data[0]
    )


def parse_json_tasks_file(json_content: str) -> list[dict[str, Any]]:
    """Read an array of task-shaped objects, as written by the JSON export.

    Every record gets a fresh local id and is marked unsynced.
    """
    try:
        data = json.loads(json_content)
    except ValueError as e:
        logger.error(f"Failed to parse JSON tasks file: {e}")
        return []

    if not isinstance(data, list):
        return []

    return [{**item, "id": new_id(), "synced": False} for item in data if isinstance(item, dict)]
