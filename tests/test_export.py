# tests/test_export.py

from __future__ import annotations

import json
from datetime import datetime, timezone

from caldav_tasks.core.export import (
    CSV_HEADERS,
    EXPORT_FORMATS,
    export_task_as_ics,
    export_tasks_as_csv,
    export_tasks_as_ics,
    export_tasks_as_json,
    export_tasks_as_markdown,
)
from caldav_tasks.core.ical import parse_ics_file
from caldav_tasks.core.models import Priority, Task


def test_ics_bundle_holds_one_vtodo_per_task() -> None:
    tasks = [Task(title="One"), Task(title="Two"), Task(title="Three")]

    text = export_tasks_as_ics(tasks)

    assert text.count("BEGIN:VCALENDAR") == 1
    assert text.count("BEGIN:VTODO") == 3
    assert [r["title"] for r in parse_ics_file(text)] == ["One", "Two", "Three"]


def test_task_export_includes_descendants() -> None:
    parent = Task(title="Parent")
    child = Task(title="Child", parent_uid=parent.uid)

    records = parse_ics_file(export_task_as_ics(parent, [child]))

    assert [r["title"] for r in records] == ["Parent", "Child"]
    assert records[1]["parent_uid"] == parent.uid


def test_json_export_is_a_flat_list() -> None:
    task = Task(title="Plan", priority=Priority.HIGH)

    data = json.loads(export_tasks_as_json([task]))

    assert data[0]["title"] == "Plan"
    assert data[0]["priority"] == "high"
    assert data[0]["uid"] == task.uid


def test_markdown_checklist_with_metadata_and_children() -> None:
    parent = Task(
        title="Move house",
        priority=Priority.HIGH,
        due_date=datetime(2024, 7, 1, tzinfo=timezone.utc),
        categories="Home",
        description="Call the movers\nBook the van",
    )
    child = Task(title="Pack books", completed=True, parent_uid=parent.uid)
    children = {parent.uid: [child]}

    text = export_tasks_as_markdown([parent], children_of=lambda t: children.get(t.uid, []))

    assert text.splitlines() == [
        "[ ] Move house (Priority: high, Due: 2024-07-01, Category: Home)",
        "  > Call the movers",
        "  > Book the van",
        "  [x] Pack books",
    ]


def test_markdown_without_metadata() -> None:
    assert export_tasks_as_markdown([Task(title="Plain")]) == "[ ] Plain\n"


def test_csv_quotes_only_title_and_description() -> None:
    task = Task(
        title='Say "hi"',
        description="a, b",
        priority=Priority.LOW,
        completed=True,
        categories="Work",
        due_date=datetime(2024, 1, 2, tzinfo=timezone.utc),
        created_at=datetime(2023, 12, 1, tzinfo=timezone.utc),
        modified_at=datetime(2023, 12, 5, tzinfo=timezone.utc),
    )

    lines = export_tasks_as_csv([task]).split("\n")

    assert lines[0] == ",".join(CSV_HEADERS)
    assert lines[1] == '"Say ""hi""","a, b",Completed,low,2024-01-02,,Work,2023-12-01,2023-12-05'


def test_export_formats_registry() -> None:
    assert set(EXPORT_FORMATS) == {"ics", "json", "md", "csv"}
    assert EXPORT_FORMATS["md"][1] == ".md"
