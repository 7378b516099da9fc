"""Read-side views over the task store: filtering, sorting and tree flattening.

Views are derived on demand and cached by :class:`TaskQueryCache`, which
drops everything whenever the store reports a mutation.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from caldav_tasks.core.models import (
    FlattenedTask,
    Priority,
    SortConfig,
    SortMode,
    Task,
    UIState,
)

if TYPE_CHECKING:
    from caldav_tasks.core.store import TaskStore

logger = logging.getLogger(__name__)

PRIORITY_RANK: dict[Priority, int] = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
    Priority.NONE: 3,
}


def filter_tasks(tasks: Iterable[Task], ui: UIState) -> list[Task]:
    """Apply the active tag/calendar selection, completion toggle and search."""
    query = ui.search_query.lower()
    result = []

    for task in tasks:
        if ui.active_tag_id is not None:
            if ui.active_tag_id not in task.tags:
                continue
        elif ui.active_calendar_id is not None and task.calendar_id != ui.active_calendar_id:
            continue

        if not ui.show_completed_tasks and task.completed:
            continue

        if query and not (
            query in task.title.lower()
            or query in task.description.lower()
            or any(query in subtask.title.lower() for subtask in task.subtasks)
        ):
            continue

        result.append(task)

    return result


def _compare_optional_dates(a: datetime | None, b: datetime | None, multiplier: int) -> int:
    # Undated tasks sort last regardless of direction
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    return _sign((a - b).total_seconds()) * multiplier


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _compare(a: Task, b: Task, config: SortConfig) -> int:
    mode = config.mode
    multiplier = config.multiplier

    # TODO: give SMART its own due-date and priority weighting; it aliases MANUAL for now
    if mode in (SortMode.MANUAL, SortMode.SMART):
        return _sign(a.sort_order - b.sort_order) * multiplier
    if mode == SortMode.DUE_DATE:
        return _compare_optional_dates(a.due_date, b.due_date, multiplier)
    if mode == SortMode.START_DATE:
        return _compare_optional_dates(a.start_date, b.start_date, multiplier)
    if mode == SortMode.PRIORITY:
        return _sign(PRIORITY_RANK[a.priority] - PRIORITY_RANK[b.priority]) * multiplier
    if mode == SortMode.TITLE:
        left, right = a.title.casefold(), b.title.casefold()
        return ((left > right) - (left < right)) * multiplier
    if mode == SortMode.MODIFIED:
        return _sign((b.modified_at - a.modified_at).total_seconds()) * multiplier
    if mode == SortMode.CREATED:
        return _sign((b.created_at - a.created_at).total_seconds()) * multiplier
    return 0


def sort_tasks(tasks: Iterable[Task], sort_config: SortConfig | None = None) -> list[Task]:
    """Return a new list sorted by ``sort_config`` (stable)."""
    config = sort_config or SortConfig()
    return sorted(tasks, key=functools.cmp_to_key(lambda a, b: _compare(a, b, config)))


def flatten_tree(
    tasks: Iterable[Task],
    sort_config: SortConfig | None = None,
    include_collapsed: bool = False,
) -> list[FlattenedTask]:
    """Depth-first flattening of the task hierarchy.

    Tasks whose parent is not among ``tasks`` are treated as roots. Children
    of collapsed tasks are left out unless ``include_collapsed`` is set.
    """
    task_list = list(tasks)
    uids = {task.uid for task in task_list}
    children: dict[str | None, list[Task]] = {}
    for task in task_list:
        parent = task.parent_uid if task.parent_uid in uids else None
        children.setdefault(parent, []).append(task)

    flattened: list[FlattenedTask] = []
    visited: set[str] = set()

    def walk(parent_uid: str | None, depth: int, ancestors: list[str]) -> None:
        for task in sort_tasks(children.get(parent_uid, []), sort_config):
            if task.id in visited:
                continue
            visited.add(task.id)
            flattened.append(
                FlattenedTask(
                    id=task.id,
                    uid=task.uid,
                    title=task.title,
                    depth=depth,
                    parent_uid=parent_uid,
                    ancestor_ids=list(ancestors),
                    sort_order=task.sort_order,
                )
            )
            if include_collapsed or not task.is_collapsed:
                walk(task.uid, depth + 1, [*ancestors, task.id])

    walk(None, 0, [])
    return flattened


class TaskQueryCache:
    """Memoizes derived task views until the store changes.

    Any mutation signal invalidates every cached view; there is no
    field-level diffing.
    """

    def __init__(self, store: TaskStore):
        self.store = store
        self._views: dict[str, Any] = {}
        self._unsubscribe = store.subscribe(self.invalidate)

    def invalidate(self) -> None:
        if self._views:
            logger.debug(f"Invalidating {len(self._views)} cached task views")
        self._views.clear()

    def close(self) -> None:
        self._unsubscribe()
        self._views.clear()

    def _cached(self, key: str, compute: Callable[[], Any]) -> Any:
        if key not in self._views:
            self._views[key] = compute()
        return self._views[key]

    def visible_tasks(self) -> list[Task]:
        """Filtered and sorted tasks for the current UI selection."""

        def compute() -> list[Task]:
            ui = self.store.ui
            return sort_tasks(filter_tasks(self.store.get_tasks(), ui), ui.sort_config)

        return self._cached("visible_tasks", compute)

    def visible_tree(self) -> list[FlattenedTask]:
        def compute() -> list[FlattenedTask]:
            ui = self.store.ui
            return flatten_tree(filter_tasks(self.store.get_tasks(), ui), ui.sort_config)

        return self._cached("visible_tree", compute)

    def tag_counts(self) -> dict[str, int]:
        def compute() -> dict[str, int]:
            counts = {tag.id: 0 for tag in self.store.get_tags()}
            for task in self.store.get_tasks():
                for tag_id in task.tags:
                    if tag_id in counts:
                        counts[tag_id] += 1
            return counts

        return self._cached("tag_counts", compute)
