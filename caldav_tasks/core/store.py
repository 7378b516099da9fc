"""In-memory task store.

The store is the single source of truth for tasks, tags, accounts, calendars,
pending server deletions and UI selection. It is mutated both by user actions
and by the sync engine. All operations are synchronous; every mutation emits
a change signal to subscribers. Operations that reference unknown ids are
no-ops.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from caldav_tasks.core.config import TaskDefaultsConfig
from caldav_tasks.core.ical import split_categories, to_apple_epoch
from caldav_tasks.core.models import (
    Account,
    Calendar,
    DataSnapshot,
    FlattenedTask,
    PendingDeletion,
    SortConfig,
    Subtask,
    Tag,
    Task,
    UIState,
    new_id,
    utcnow,
)
from caldav_tasks.core.query import sort_tasks
from caldav_tasks.utils.colors import generate_tag_color

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]

# Gap left between manually reordered siblings
REORDER_STEP = 100


class TaskStore:
    """Entity store with hierarchy and ordering operations."""

    def __init__(
        self,
        defaults: TaskDefaultsConfig | None = None,
        snapshot: DataSnapshot | None = None,
    ):
        self.defaults = defaults or TaskDefaultsConfig()
        self._tasks: list[Task] = []
        self._tags: list[Tag] = []
        self._accounts: list[Account] = []
        self._pending_deletions: list[PendingDeletion] = []
        self.ui = UIState()
        self._listeners: list[ChangeListener] = []
        if snapshot is not None:
            self.load_snapshot(snapshot)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Store change listener failed")

    # ------------------------------------------------------------------
    # Snapshot boundary
    # ------------------------------------------------------------------

    def snapshot(self) -> DataSnapshot:
        return DataSnapshot(
            tasks=list(self._tasks),
            tags=list(self._tags),
            accounts=list(self._accounts),
            pending_deletions=list(self._pending_deletions),
            ui=replace(self.ui),
        )

    def load_snapshot(self, snapshot: DataSnapshot) -> None:
        self._tasks = list(snapshot.tasks)
        self._tags = list(snapshot.tags)
        self._accounts = list(snapshot.accounts)
        self._pending_deletions = list(snapshot.pending_deletions)
        self.ui = snapshot.ui
        logger.debug(
            f"Loaded snapshot: {len(self._tasks)} tasks, {len(self._tags)} tags, "
            f"{len(self._accounts)} accounts"
        )
        self._notify()

    # ------------------------------------------------------------------
    # Task queries
    # ------------------------------------------------------------------

    def get_tasks(self) -> list[Task]:
        return list(self._tasks)

    def get_task(self, task_id: str) -> Task | None:
        return next((t for t in self._tasks if t.id == task_id), None)

    def get_task_by_uid(self, uid: str) -> Task | None:
        return next((t for t in self._tasks if t.uid == uid), None)

    def get_tasks_by_calendar(self, calendar_id: str) -> list[Task]:
        return [t for t in self._tasks if t.calendar_id == calendar_id]

    def get_tasks_by_tag(self, tag_id: str) -> list[Task]:
        return [t for t in self._tasks if tag_id in t.tags]

    def get_child_tasks(self, parent_uid: str) -> list[Task]:
        return [t for t in self._tasks if t.parent_uid == parent_uid]

    def count_children(self, parent_uid: str) -> int:
        return len(self.get_child_tasks(parent_uid))

    def get_all_descendants(self, parent_uid: str) -> list[Task]:
        descendants: list[Task] = []
        seen: set[str] = set()
        pending = [parent_uid]
        while pending:
            uid = pending.pop(0)
            for child in self.get_child_tasks(uid):
                if child.id in seen:
                    continue
                seen.add(child.id)
                descendants.append(child)
                pending.append(child.uid)
        return descendants

    def export_task_and_children(self, task_id: str) -> tuple[Task, list[Task]] | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        return task, self.get_all_descendants(task.uid)

    # ------------------------------------------------------------------
    # Task mutations
    # ------------------------------------------------------------------

    def next_sort_order(self) -> int:
        """One past the highest sort order, seeded from the Apple epoch clock."""
        if self._tasks:
            return max(t.sort_order for t in self._tasks) + 1
        return to_apple_epoch(utcnow())

    def _resolve_destination(self, fields: dict[str, Any]) -> tuple[str, str]:
        calendar_id = fields.get("calendar_id") or self.ui.active_calendar_id
        account_id = fields.get("account_id") or self.ui.active_account_id

        if not calendar_id and self._accounts:
            if self.defaults.default_calendar_id:
                account = self.find_account_for_calendar(self.defaults.default_calendar_id)
                if account:
                    calendar_id = self.defaults.default_calendar_id
                    account_id = account.id
            if not calendar_id:
                first = next((a for a in self._accounts if a.calendars), None)
                if first:
                    calendar_id = first.calendars[0].id
                    account_id = first.id

        if calendar_id and not account_id:
            account = self.find_account_for_calendar(calendar_id)
            account_id = account.id if account else None

        return calendar_id or "", account_id or ""

    def create_task(self, **fields: Any) -> Task:
        """Create a local task, applying selection and settings defaults."""
        now = utcnow()
        calendar_id, account_id = self._resolve_destination(fields)

        tags = list(fields.pop("tags", None) or [])
        if self.ui.active_tag_id and self.ui.active_tag_id not in tags:
            tags.insert(0, self.ui.active_tag_id)
        if not tags and self.defaults.default_tags:
            tags = list(self.defaults.default_tags)

        values: dict[str, Any] = {
            "title": "New Task",
            "priority": self.defaults.default_priority,
            "sort_order": self.next_sort_order(),
            "created_at": now,
            "modified_at": now,
            "synced": False,
        }
        values.update(fields)
        values.update(
            calendar_id=calendar_id,
            account_id=account_id,
            local_only=not calendar_id or not account_id,
            tags=tags,
        )

        task = Task(**values)
        self._tasks.append(task)
        logger.debug(f"Created task '{task.title}' ({task.id})")
        self._notify()
        return task

    def insert_task(self, task: Task) -> Task:
        """Add a fully formed task as-is (used for pulled and imported tasks)."""
        self._tasks.append(task)
        self._notify()
        return task

    def import_tasks(
        self, records: Iterable[dict[str, Any]], calendar_id: str | None = None
    ) -> list[Task]:
        """Add partial task records produced by the import parsers.

        Records get fresh ids, the given destination calendar and resolved
        tags; they are left unsynced so the next sync uploads them.
        """
        account = self.find_account_for_calendar(calendar_id) if calendar_id else None
        imported = []
        for record in records:
            task = Task.from_dict(record)
            known_ids = [tag_id for tag_id in task.tags if self.get_tag(tag_id)]
            tag_ids = [self.ensure_tag(name).id for name in split_categories(task.categories)]
            task = replace(
                task,
                id=new_id(),
                tags=list(dict.fromkeys([*known_ids, *tag_ids])),
                calendar_id=calendar_id or "",
                account_id=account.id if account else "",
                local_only=account is None,
                href=None,
                etag=None,
                synced=False,
            )
            self._tasks.append(task)
            imported.append(task)
        logger.info(f"Imported {len(imported)} tasks")
        self._notify()
        return imported

    def update_task(self, task_id: str, **changes: Any) -> Task | None:
        """Apply field changes.

        Local edits mark the task unsynced and bump ``modified_at`` unless the
        caller passes those fields explicitly (as the sync engine does).
        """
        for index, task in enumerate(self._tasks):
            if task.id == task_id:
                changes.setdefault("modified_at", utcnow())
                changes.setdefault("synced", False)
                updated = replace(task, **changes)
                self._tasks[index] = updated
                self._notify()
                return updated
        return None

    def _replace_many(self, updates: dict[str, dict[str, Any]]) -> None:
        now = utcnow()
        self._tasks = [
            replace(task, **{"modified_at": now, "synced": False, **updates[task.id]})
            if task.id in updates
            else task
            for task in self._tasks
        ]

    def delete_task(self, task_id: str, delete_children: bool | None = None) -> None:
        """Delete a task, deleting or orphaning its descendants.

        Each deleted task that exists on a server leaves a pending deletion so
        the removal is pushed on the next sync.
        """
        task = self.get_task(task_id)
        if task is None:
            return
        if delete_children is None:
            delete_children = self.defaults.delete_subtasks_with_parent == "delete"

        doomed = {task.id}
        if delete_children:
            doomed.update(t.id for t in self.get_all_descendants(task.uid))

        self._record_pending_deletions(t for t in self._tasks if t.id in doomed)

        if not delete_children:
            self._replace_many({t.id: {"parent_uid": None} for t in self.get_child_tasks(task.uid)})

        self._tasks = [t for t in self._tasks if t.id not in doomed]
        if self.ui.selected_task_id in doomed:
            self.ui = replace(self.ui, selected_task_id=None, is_editor_open=False)
        logger.debug(f"Deleted {len(doomed)} task(s) starting at '{task.title}'")
        self._notify()

    def _record_pending_deletions(self, tasks: Iterable[Task]) -> None:
        known = {d.uid for d in self._pending_deletions}
        for task in tasks:
            if task.href and task.uid not in known:
                self._pending_deletions.append(
                    PendingDeletion(
                        uid=task.uid,
                        href=task.href,
                        account_id=task.account_id,
                        calendar_id=task.calendar_id,
                    )
                )
                known.add(task.uid)

    def remove_synced_task(self, task_id: str) -> None:
        """Drop a task the server no longer has, without queueing a remote delete."""
        before = len(self._tasks)
        self._tasks = [t for t in self._tasks if t.id != task_id]
        if len(self._tasks) != before:
            if self.ui.selected_task_id == task_id:
                self.ui = replace(self.ui, selected_task_id=None, is_editor_open=False)
            self._notify()

    def toggle_task_complete(self, task_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        completed = not task.completed
        return self.update_task(
            task_id,
            completed=completed,
            completed_at=utcnow() if completed else None,
        )

    def toggle_task_collapsed(self, task_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        return self.update_task(task_id, is_collapsed=not task.is_collapsed)

    # Legacy checklist

    def add_subtask(self, task_id: str, title: str) -> Subtask | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        subtask = Subtask(title=title)
        self.update_task(task_id, subtasks=[*task.subtasks, subtask])
        return subtask

    def update_subtask(self, task_id: str, subtask_id: str, **changes: Any) -> None:
        task = self.get_task(task_id)
        if task is None:
            return
        subtasks = [replace(s, **changes) if s.id == subtask_id else s for s in task.subtasks]
        self.update_task(task_id, subtasks=subtasks)

    def delete_subtask(self, task_id: str, subtask_id: str) -> None:
        task = self.get_task(task_id)
        if task is None:
            return
        self.update_task(task_id, subtasks=[s for s in task.subtasks if s.id != subtask_id])

    def toggle_subtask_complete(self, task_id: str, subtask_id: str) -> None:
        task = self.get_task(task_id)
        if task is None:
            return
        subtasks = [
            replace(s, completed=not s.completed) if s.id == subtask_id else s
            for s in task.subtasks
        ]
        self.update_task(task_id, subtasks=subtasks)

    def add_tag_to_task(self, task_id: str, tag_id: str) -> None:
        task = self.get_task(task_id)
        if task is None:
            return
        self.update_task(task_id, tags=[*(t for t in task.tags if t != tag_id), tag_id])

    def remove_tag_from_task(self, task_id: str, tag_id: str) -> None:
        task = self.get_task(task_id)
        if task is None:
            return
        self.update_task(task_id, tags=[t for t in task.tags if t != tag_id])

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def _is_ancestor_or_self(self, task_id: str, uid: str | None) -> bool:
        """True if walking up from ``uid`` reaches the task ``task_id``."""
        seen: set[str] = set()
        while uid and uid not in seen:
            seen.add(uid)
            node = self.get_task_by_uid(uid)
            if node is None:
                return False
            if node.id == task_id:
                return True
            uid = node.parent_uid
        return False

    def _calendar_inheritance(
        self, task: Task, parent_uid: str | None
    ) -> dict[str, dict[str, Any]]:
        """Updates moving ``task`` and its subtree into the parent's calendar.

        Moved tasks that already live on a server are queued for deletion from
        their old collection and lose their href so they are created anew in
        the parent's.
        """
        if not parent_uid:
            return {}
        parent = self.get_task_by_uid(parent_uid)
        if parent is None or parent.calendar_id == task.calendar_id:
            return {}
        moved = [task, *self.get_all_descendants(task.uid)]
        self._record_pending_deletions(t for t in moved if t.calendar_id != parent.calendar_id)
        updates: dict[str, dict[str, Any]] = {}
        for t in moved:
            change = {"calendar_id": parent.calendar_id, "account_id": parent.account_id}
            if t.href and t.calendar_id != parent.calendar_id:
                change.update(href=None, etag=None)
            updates[t.id] = change
        return updates

    def set_task_parent(self, task_id: str, parent_uid: str | None) -> bool:
        """Move a task under ``parent_uid`` (None for root).

        Returns False without changing anything when the parent is unknown or
        the move would create a cycle. On success the task goes to the end of
        its new sibling group.
        """
        task = self.get_task(task_id)
        if task is None:
            return False

        if parent_uid:
            if self.get_task_by_uid(parent_uid) is None:
                logger.debug(f"Ignoring reparent of {task_id}: unknown parent {parent_uid}")
                return False
            if self._is_ancestor_or_self(task_id, parent_uid):
                logger.debug(f"Ignoring reparent of {task_id}: would create a cycle")
                return False

        siblings = [t for t in self._tasks if t.parent_uid == parent_uid and t.id != task_id]
        sort_order = max((t.sort_order for t in siblings), default=task.sort_order - 1) + 1

        updates = self._calendar_inheritance(task, parent_uid)
        updates.setdefault(task.id, {}).update(parent_uid=parent_uid, sort_order=sort_order)
        self._replace_many(updates)
        self._notify()
        return True

    def reorder_tasks(
        self,
        active_id: str,
        over_id: str,
        flattened: list[FlattenedTask],
        target_indent: int | None = None,
    ) -> bool:
        """Apply a drag-and-drop move within the visible tree.

        ``flattened`` is the depth-annotated tree as displayed. The moved task
        may change parent (resolved from the drop position and
        ``target_indent``); its destination sibling group is renumbered with
        gaps of :data:`REORDER_STEP`. Returns False when the move is rejected.
        """
        active_task = self.get_task(active_id)
        if active_task is None or self.get_task(over_id) is None:
            return False

        index = {item.id: i for i, item in enumerate(flattened)}
        if active_id not in index or over_id not in index:
            return False
        active_index = index[active_id]
        over_index = index[over_id]
        over_item = flattened[over_index]

        if active_id in over_item.ancestor_ids:
            return False

        moving = {active_id} | {t.id for t in self.get_all_descendants(active_task.uid)}
        moving |= {item.id for item in flattened if active_id in item.ancestor_ids}

        effective_indent = target_indent if target_indent is not None else over_item.depth
        new_parent_uid = self._resolve_drop_parent(
            flattened, moving, active_index, over_index, effective_indent
        )

        if new_parent_uid is not None:
            parent = self.get_task_by_uid(new_parent_uid)
            if parent is None or parent.id in moving:
                return False

        parent_task = self.get_task_by_uid(new_parent_uid) if new_parent_uid else None
        destination_calendar = parent_task.calendar_id if parent_task else active_task.calendar_id
        siblings = sort_tasks(
            [
                t
                for t in self._tasks
                if t.parent_uid == new_parent_uid
                and t.id not in moving
                and t.calendar_id == destination_calendar
            ],
            self.ui.sort_config,
        )
        sibling_index = {t.id: i for i, t in enumerate(siblings)}

        insert_index = 0
        for i in range(over_index, -1, -1):
            item = flattened[i]
            if item.id in moving:
                continue
            if item.parent_uid == new_parent_uid and item.id in sibling_index:
                position = sibling_index[item.id]
                # Dropping onto a sibling while moving up takes its place
                if i == over_index and active_index > over_index:
                    insert_index = position
                else:
                    insert_index = position + 1
                break
            if new_parent_uid is not None and item.uid == new_parent_uid:
                break

        new_order = list(siblings)
        new_order.insert(min(insert_index, len(new_order)), active_task)

        updates: dict[str, dict[str, Any]] = {}
        if new_parent_uid != active_task.parent_uid:
            updates = self._calendar_inheritance(active_task, new_parent_uid)
        for position, task in enumerate(new_order):
            change = updates.setdefault(task.id, {})
            change["sort_order"] = (position + 1) * REORDER_STEP
            if task.id == active_id:
                change["parent_uid"] = new_parent_uid

        self._replace_many(updates)
        self._notify()
        return True

    @staticmethod
    def _resolve_drop_parent(
        flattened: list[FlattenedTask],
        moving: set[str],
        active_index: int,
        over_index: int,
        indent: int,
    ) -> str | None:
        """Nearest preceding visible item one level shallower than ``indent``."""
        if indent <= 0:
            return None

        if active_index == over_index:
            start = active_index - 1
        elif active_index < over_index:
            start = over_index
        else:
            start = over_index - 1

        for i in range(start, -1, -1):
            candidate = flattened[i]
            if candidate.id in moving:
                continue
            if candidate.depth == indent - 1:
                return candidate.uid
            if candidate.depth < indent - 1:
                break

        # Indent deeper than the drop position allows: nest under the closest
        # shallower item instead
        fallback_start = (active_index if active_index == over_index else over_index) - 1
        for i in range(fallback_start, -1, -1):
            candidate = flattened[i]
            if candidate.id in moving:
                continue
            if candidate.depth < indent:
                return candidate.uid
        return None

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def get_tags(self) -> list[Tag]:
        return list(self._tags)

    def get_tag(self, tag_id: str) -> Tag | None:
        return next((t for t in self._tags if t.id == tag_id), None)

    def find_tag_by_name(self, name: str) -> Tag | None:
        wanted = name.strip().lower()
        return next((t for t in self._tags if t.name.lower() == wanted), None)

    def create_tag(self, name: str = "New Tag", color: str | None = None, icon: str | None = None) -> Tag:
        tag = Tag(name=name, color=color or "#3b82f6", icon=icon)
        self._tags.append(tag)
        self._notify()
        return tag

    def ensure_tag(self, name: str) -> Tag:
        """Return the tag named ``name`` (case-insensitive), creating it if needed."""
        existing = self.find_tag_by_name(name)
        if existing is not None:
            return existing
        logger.info(f"Creating tag: {name.strip()}")
        return self.create_tag(name=name.strip(), color=generate_tag_color(name.strip()))

    def update_tag(self, tag_id: str, **changes: Any) -> Tag | None:
        for index, tag in enumerate(self._tags):
            if tag.id == tag_id:
                updated = replace(tag, **changes)
                self._tags[index] = updated
                self._notify()
                return updated
        return None

    def delete_tag(self, tag_id: str) -> None:
        if self.get_tag(tag_id) is None:
            return
        self._tags = [t for t in self._tags if t.id != tag_id]
        self._tasks = [
            replace(t, tags=[x for x in t.tags if x != tag_id]) if tag_id in t.tags else t
            for t in self._tasks
        ]
        if self.ui.active_tag_id == tag_id:
            self.ui = replace(self.ui, active_tag_id=None)
        self._notify()

    def category_text(self, task: Task) -> str | None:
        """Comma-joined tag names, as written to CATEGORIES."""
        names = [tag.name for tag in (self.get_tag(tag_id) for tag_id in task.tags) if tag]
        return ",".join(names) or None

    def wire_task(self, task: Task) -> Task:
        """Copy of ``task`` with its tags rendered into the wire category field."""
        return replace(task, categories=self.category_text(task))

    # ------------------------------------------------------------------
    # Accounts and calendars
    # ------------------------------------------------------------------

    def get_accounts(self) -> list[Account]:
        return list(self._accounts)

    def get_account(self, account_id: str) -> Account | None:
        return next((a for a in self._accounts if a.id == account_id), None)

    def create_account(self, **fields: Any) -> Account:
        fields.pop("calendars", None)
        account = Account(
            name=fields.pop("name", None) or "New Account",
            server_url=fields.pop("server_url", ""),
            username=fields.pop("username", ""),
            **fields,
        )
        self._accounts.append(account)
        logger.info(f"Created account: {account.name}")
        self._notify()
        return account

    def update_account(self, account_id: str, **changes: Any) -> Account | None:
        for index, account in enumerate(self._accounts):
            if account.id == account_id:
                updated = replace(account, **changes)
                self._accounts[index] = updated
                self._notify()
                return updated
        return None

    def delete_account(self, account_id: str) -> None:
        account = self.get_account(account_id)
        if account is None:
            return
        calendar_ids = {c.id for c in account.calendars}
        active_deleted = self.ui.active_calendar_id in calendar_ids

        self._accounts = [a for a in self._accounts if a.id != account_id]
        self._tasks = [t for t in self._tasks if t.account_id != account_id]
        self._pending_deletions = [d for d in self._pending_deletions if d.account_id != account_id]
        self.ui = replace(
            self.ui,
            active_account_id=None
            if active_deleted or self.ui.active_account_id == account_id
            else self.ui.active_account_id,
            active_calendar_id=None if active_deleted else self.ui.active_calendar_id,
            active_tag_id=None if active_deleted else self.ui.active_tag_id,
            selected_task_id=None,
            is_editor_open=False,
        )
        logger.info(f"Deleted account: {account.name}")
        self._notify()

    def get_calendar(self, calendar_id: str) -> Calendar | None:
        for account in self._accounts:
            for calendar in account.calendars:
                if calendar.id == calendar_id:
                    return calendar
        return None

    def find_account_for_calendar(self, calendar_id: str) -> Account | None:
        return next(
            (a for a in self._accounts if any(c.id == calendar_id for c in a.calendars)),
            None,
        )

    def add_calendar(self, account_id: str, calendar: Calendar) -> Calendar | None:
        """Attach a calendar to an account.

        The very first calendar in the store adopts all local-only tasks.
        """
        account = self.get_account(account_id)
        if account is None:
            return None
        calendar = replace(calendar, account_id=account_id)
        is_first = not any(a.calendars for a in self._accounts)

        if is_first:
            adopt = {
                t.id: {"calendar_id": calendar.id, "account_id": account_id, "local_only": False}
                for t in self._tasks
                if t.local_only or not t.calendar_id or not t.account_id
            }
            if adopt:
                logger.info(f"Assigning {len(adopt)} local-only tasks to {calendar.display_name}")
                self._replace_many(adopt)

        self._accounts = [
            replace(a, calendars=[*a.calendars, calendar]) if a.id == account_id else a
            for a in self._accounts
        ]
        logger.info(f"Adding calendar: {calendar.display_name} with ID: {calendar.id}")
        self._notify()
        return calendar

    def delete_calendar(self, account_id: str, calendar_id: str) -> None:
        """Remove a calendar locally, queueing server deletion of its tasks."""
        if self.get_account(account_id) is None:
            return
        doomed = [t for t in self._tasks if t.calendar_id == calendar_id]
        self._record_pending_deletions(doomed)
        self._drop_calendar(account_id, calendar_id)
        self._notify()

    def remove_remote_calendar(self, account_id: str, calendar_id: str) -> None:
        """Forget a calendar that vanished from the server, along with its tasks."""
        if self.get_account(account_id) is None:
            return
        self._drop_calendar(account_id, calendar_id)
        self._notify()

    def _drop_calendar(self, account_id: str, calendar_id: str) -> None:
        active_deleted = self.ui.active_calendar_id == calendar_id
        self._accounts = [
            replace(a, calendars=[c for c in a.calendars if c.id != calendar_id])
            if a.id == account_id
            else a
            for a in self._accounts
        ]
        self._tasks = [t for t in self._tasks if t.calendar_id != calendar_id]
        if active_deleted:
            self.ui = replace(
                self.ui,
                active_calendar_id=None,
                active_account_id=None,
                active_tag_id=None,
                selected_task_id=None,
                is_editor_open=False,
            )

    def set_calendars(self, account_id: str, calendars: list[Calendar]) -> None:
        """Replace an account's calendar list (no-op if unchanged)."""
        account = self.get_account(account_id)
        if account is None or account.calendars == calendars:
            return
        self.update_account(account_id, calendars=list(calendars))

    # ------------------------------------------------------------------
    # Pending deletions
    # ------------------------------------------------------------------

    def get_pending_deletions(self, calendar_id: str | None = None) -> list[PendingDeletion]:
        if calendar_id is None:
            return list(self._pending_deletions)
        return [d for d in self._pending_deletions if d.calendar_id == calendar_id]

    def record_pending_deletion(self, task: Task) -> None:
        """Queue the remote copy of ``task`` for deletion on the next sync."""
        before = len(self._pending_deletions)
        self._record_pending_deletions([task])
        if len(self._pending_deletions) != before:
            self._notify()

    def clear_pending_deletion(self, uid: str) -> None:
        before = len(self._pending_deletions)
        self._pending_deletions = [d for d in self._pending_deletions if d.uid != uid]
        if len(self._pending_deletions) != before:
            self._notify()

    # ------------------------------------------------------------------
    # UI selection
    # ------------------------------------------------------------------

    def _set_ui(self, **changes: Any) -> None:
        self.ui = replace(self.ui, **changes)
        self._notify()

    def set_active_account(self, account_id: str | None) -> None:
        self._set_ui(active_account_id=account_id, active_calendar_id=None)

    def set_active_calendar(self, calendar_id: str | None) -> None:
        account = self.find_account_for_calendar(calendar_id) if calendar_id else None
        self._set_ui(
            active_calendar_id=calendar_id,
            active_account_id=account.id if account else self.ui.active_account_id,
            active_tag_id=None,
            selected_task_id=None,
            is_editor_open=False,
        )

    def set_active_tag(self, tag_id: str | None) -> None:
        self._set_ui(
            active_tag_id=tag_id,
            active_calendar_id=None,
            selected_task_id=None,
            is_editor_open=False,
        )

    def set_all_tasks_view(self) -> None:
        self._set_ui(
            active_calendar_id=None,
            active_tag_id=None,
            selected_task_id=None,
            is_editor_open=False,
        )

    def set_selected_task(self, task_id: str | None) -> None:
        self._set_ui(selected_task_id=task_id, is_editor_open=task_id is not None)

    def set_editor_open(self, is_open: bool) -> None:
        self._set_ui(
            is_editor_open=is_open,
            selected_task_id=self.ui.selected_task_id if is_open else None,
        )

    def set_search_query(self, query: str) -> None:
        self._set_ui(search_query=query)

    def set_sort_config(self, sort_config: SortConfig) -> None:
        self._set_ui(sort_config=sort_config)

    def set_show_completed_tasks(self, show: bool) -> None:
        self._set_ui(show_completed_tasks=show)
