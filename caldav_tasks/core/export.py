"""One-way task exports: iCalendar bundle, JSON, Markdown checklist and CSV."""

import json
from collections.abc import Callable, Iterable
from datetime import datetime

from caldav_tasks.core.ical import build_vtodo, new_vcalendar
from caldav_tasks.core.models import Priority, Task

CSV_HEADERS = [
    "Title",
    "Description",
    "Status",
    "Priority",
    "Due Date",
    "Start Date",
    "Category",
    "Created",
    "Modified",
]


def _format_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def export_tasks_as_ics(tasks: Iterable[Task]) -> str:
    """Bundle tasks into one VCALENDAR with a VTODO per task."""
    cal = new_vcalendar()
    for task in tasks:
        cal.add_component(build_vtodo(task))
    return cal.to_ical().decode("utf-8")


def export_task_as_ics(task: Task, children: Iterable[Task] = ()) -> str:
    """Export a task followed by its descendants."""
    return export_tasks_as_ics([task, *children])


def export_tasks_as_json(tasks: Iterable[Task]) -> str:
    return json.dumps([task.to_dict() for task in tasks], indent=2)


def export_tasks_as_markdown(
    tasks: Iterable[Task],
    level: int = 0,
    children_of: Callable[[Task], list[Task]] | None = None,
) -> str:
    """Render tasks as an indented Markdown checklist.

    When ``children_of`` is given, each task's children are rendered beneath
    it one level deeper.
    """
    lines: list[str] = []
    indent = "  " * level

    for task in tasks:
        checkbox = "[x]" if task.completed else "[ ]"
        line = f"{indent}{checkbox} {task.title}"

        metadata = []
        if task.priority != Priority.NONE:
            metadata.append(f"Priority: {task.priority.value}")
        if task.due_date:
            metadata.append(f"Due: {_format_date(task.due_date)}")
        if task.categories:
            metadata.append(f"Category: {task.categories}")
        if metadata:
            line += f" ({', '.join(metadata)})"
        lines.append(line)

        if task.description:
            for description_line in task.description.split("\n"):
                lines.append(f"{indent}  > {description_line}")

        if children_of is not None:
            children = children_of(task)
            if children:
                lines.append(
                    export_tasks_as_markdown(children, level + 1, children_of).rstrip("\n")
                )

    return "".join(f"{line}\n" for line in lines)


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def export_tasks_as_csv(tasks: Iterable[Task]) -> str:
    """CSV with a fixed column order. Only Title and Description are quoted."""
    rows = [",".join(CSV_HEADERS)]
    for task in tasks:
        rows.append(
            ",".join(
                [
                    _quote(task.title),
                    _quote(task.description),
                    "Completed" if task.completed else "Pending",
                    task.priority.value,
                    _format_date(task.due_date),
                    _format_date(task.start_date),
                    task.categories or "",
                    _format_date(task.created_at),
                    _format_date(task.modified_at),
                ]
            )
        )
    return "\n".join(rows)


EXPORT_FORMATS: dict[str, tuple[Callable[[list[Task]], str], str]] = {
    "ics": (export_tasks_as_ics, ".ics"),
    "json": (export_tasks_as_json, ".json"),
    "md": (export_tasks_as_markdown, ".md"),
    "csv": (export_tasks_as_csv, ".csv"),
}
