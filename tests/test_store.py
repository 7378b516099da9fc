# tests/test_store.py

from __future__ import annotations

from datetime import timedelta

from caldav_tasks.core.config import TaskDefaultsConfig
from caldav_tasks.core.ical import to_apple_epoch
from caldav_tasks.core.models import Account, Calendar, Priority, Task, utcnow
from caldav_tasks.core.query import flatten_tree, sort_tasks
from caldav_tasks.core.store import TaskStore

from .conftest import HOME_CALENDAR_ID


def _chain(store: TaskStore) -> tuple[Task, Task, Task]:
    """A <- B <- C (C's parent is B, B's parent is A)."""
    a = store.create_task(title="A")
    b = store.create_task(title="B", parent_uid=a.uid)
    c = store.create_task(title="C", parent_uid=b.uid)
    return a, b, c


def _titles_in_order(store: TaskStore, parent_uid: str | None = None) -> list[str]:
    siblings = [t for t in store.get_tasks() if t.parent_uid == parent_uid]
    return [t.title for t in sort_tasks(siblings)]


def _mark_synced(store: TaskStore) -> None:
    for task in store.get_tasks():
        store.update_task(task.id, synced=True)


# ---------------------------------------------------------------------------
# Creation and updates
# ---------------------------------------------------------------------------


def test_first_task_sort_order_is_seeded_from_apple_epoch() -> None:
    store = TaskStore()
    before = to_apple_epoch(utcnow())

    first = store.create_task(title="First")
    second = store.create_task(title="Second")

    assert before <= first.sort_order <= to_apple_epoch(utcnow())
    assert second.sort_order == first.sort_order + 1


def test_task_without_calendar_is_local_only() -> None:
    store = TaskStore()

    task = store.create_task(title="Offline idea")

    assert task.local_only is True
    assert task.calendar_id == ""
    assert task.synced is False


def test_create_defaults_to_first_calendar(store: TaskStore, account: Account) -> None:
    task = store.create_task(title="Errand")

    assert task.calendar_id == HOME_CALENDAR_ID
    assert task.account_id == account.id
    assert task.local_only is False


def test_create_applies_settings_defaults() -> None:
    store = TaskStore(
        defaults=TaskDefaultsConfig(default_priority=Priority.HIGH, default_tags=["tag-1"])
    )

    task = store.create_task(title="Defaulted")

    assert task.priority == Priority.HIGH
    assert task.tags == ["tag-1"]


def test_create_prepends_active_tag(store: TaskStore, account: Account) -> None:
    work = store.create_tag(name="Work")
    other = store.create_tag(name="Other")
    store.set_active_tag(work.id)

    task = store.create_task(title="Tagged", tags=[other.id])

    assert task.tags == [work.id, other.id]


def test_update_marks_unsynced_and_bumps_modified(store: TaskStore, account: Account) -> None:
    task = store.create_task(title="Old")
    store.update_task(task.id, synced=True, modified_at=task.modified_at - timedelta(days=1))

    updated = store.update_task(task.id, title="New")

    assert updated.title == "New"
    assert updated.synced is False
    assert updated.modified_at > task.modified_at - timedelta(days=1)


def test_update_keeps_explicit_synced_flag(store: TaskStore, account: Account) -> None:
    task = store.create_task(title="Pushed")

    updated = store.update_task(task.id, etag="e9", synced=True)

    assert updated.synced is True


def test_unknown_ids_are_no_ops(store: TaskStore) -> None:
    assert store.update_task("missing", title="x") is None
    store.delete_task("missing")
    assert store.toggle_task_complete("missing") is None
    assert store.get_pending_deletions() == []


def test_mutations_notify_subscribers(store: TaskStore) -> None:
    events: list[str] = []
    unsubscribe = store.subscribe(lambda: events.append("changed"))

    task = store.create_task(title="x")
    store.toggle_task_complete(task.id)
    unsubscribe()
    store.toggle_task_complete(task.id)

    assert events == ["changed", "changed"]


def test_failing_subscriber_does_not_break_mutation(store: TaskStore) -> None:
    def boom() -> None:
        raise RuntimeError("listener bug")

    store.subscribe(boom)

    assert store.create_task(title="still created") in store.get_tasks()


def test_toggle_complete_sets_and_clears_timestamp(store: TaskStore) -> None:
    task = store.create_task(title="Toggle")

    done = store.toggle_task_complete(task.id)
    reopened = store.toggle_task_complete(task.id)

    assert done.completed is True and done.completed_at is not None
    assert reopened.completed is False and reopened.completed_at is None


def test_toggle_collapsed_hides_children_from_tree(store: TaskStore) -> None:
    parent = store.create_task(title="Parent")
    store.create_task(title="Child", parent_uid=parent.uid)

    collapsed = store.toggle_task_collapsed(parent.id)

    assert collapsed.is_collapsed is True
    assert collapsed.synced is False
    assert [row.title for row in flatten_tree(store.get_tasks())] == ["Parent"]
    assert store.toggle_task_collapsed(parent.id).is_collapsed is False
    assert store.toggle_task_collapsed("missing") is None


def test_subtask_checklist_operations(store: TaskStore) -> None:
    task = store.create_task(title="Packing")
    sock = store.add_subtask(task.id, "Socks")
    store.add_subtask(task.id, "Shirts")

    store.toggle_subtask_complete(task.id, sock.id)
    store.update_subtask(task.id, sock.id, title="Wool socks")
    store.delete_subtask(task.id, store.get_task(task.id).subtasks[1].id)

    subtasks = store.get_task(task.id).subtasks
    assert [(s.title, s.completed) for s in subtasks] == [("Wool socks", True)]


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


def test_deleting_server_task_records_one_pending_deletion(store: TaskStore, account: Account) -> None:
    task = store.create_task(title="On server")
    store.update_task(task.id, href="/h1", etag="e1", synced=True)

    store.delete_task(task.id)
    store.delete_task(task.id)

    pending = store.get_pending_deletions()
    assert [(p.uid, p.href, p.calendar_id) for p in pending] == [(task.uid, "/h1", HOME_CALENDAR_ID)]


def test_deleting_local_task_records_nothing(store: TaskStore, account: Account) -> None:
    task = store.create_task(title="Never pushed")

    store.delete_task(task.id)

    assert store.get_pending_deletions() == []
    assert store.get_task(task.id) is None


def test_delete_cascades_to_descendants(store: TaskStore, account: Account) -> None:
    a, b, c = _chain(store)
    store.update_task(c.id, href="/c", synced=True)

    store.delete_task(a.id)

    assert store.get_tasks() == []
    assert [p.uid for p in store.get_pending_deletions()] == [c.uid]


def test_delete_can_orphan_children(store: TaskStore, account: Account) -> None:
    a, b, c = _chain(store)

    store.delete_task(a.id, delete_children=False)

    assert store.get_task(b.id).parent_uid is None
    assert store.get_task(c.id).parent_uid == b.uid


def test_keep_setting_orphans_children() -> None:
    store = TaskStore(defaults=TaskDefaultsConfig(delete_subtasks_with_parent="keep"))
    parent = store.create_task(title="Parent")
    child = store.create_task(title="Child", parent_uid=parent.uid)

    store.delete_task(parent.id)

    assert store.get_task(child.id).parent_uid is None


def test_delete_clears_selection(store: TaskStore) -> None:
    task = store.create_task(title="Selected")
    store.set_selected_task(task.id)

    store.delete_task(task.id)

    assert store.ui.selected_task_id is None
    assert store.ui.is_editor_open is False


def test_closing_editor_clears_selection(store: TaskStore) -> None:
    task = store.create_task(title="Selected")
    store.set_selected_task(task.id)
    assert store.ui.is_editor_open is True

    store.set_editor_open(True)
    assert store.ui.selected_task_id == task.id

    store.set_editor_open(False)
    assert (store.ui.is_editor_open, store.ui.selected_task_id) == (False, None)


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


def test_descendants_and_children(store: TaskStore) -> None:
    a, b, c = _chain(store)

    assert [t.id for t in store.get_child_tasks(a.uid)] == [b.id]
    assert store.count_children(b.uid) == 1
    assert {t.id for t in store.get_all_descendants(a.uid)} == {b.id, c.id}
    assert store.export_task_and_children(a.id)[1] == store.get_all_descendants(a.uid)


def test_set_parent_rejects_cycles(store: TaskStore) -> None:
    a, b, c = _chain(store)

    assert store.set_task_parent(a.id, c.uid) is False
    assert store.set_task_parent(a.id, a.uid) is False
    assert store.get_task(a.id).parent_uid is None


def test_set_parent_rejects_unknown_parent(store: TaskStore) -> None:
    task = store.create_task(title="Lonely")

    assert store.set_task_parent(task.id, "no-such-uid") is False
    assert store.get_task(task.id).parent_uid is None


def test_set_parent_moves_task_to_end_of_siblings(store: TaskStore) -> None:
    a, b, c = _chain(store)
    d = store.create_task(title="D")

    assert store.set_task_parent(d.id, a.uid) is True

    moved = store.get_task(d.id)
    assert moved.parent_uid == a.uid
    assert moved.sort_order == store.get_task(b.id).sort_order + 1
    assert moved.synced is False


def test_set_parent_inherits_parent_calendar(store: TaskStore, account: Account) -> None:
    store.add_calendar(
        account.id,
        Calendar(id="work", display_name="Work", url="https://dav/work/", account_id=account.id),
    )
    parent = store.create_task(title="Work parent", calendar_id="work")
    task = store.create_task(title="Home task")
    child = store.create_task(title="Home child", parent_uid=task.uid)

    store.set_task_parent(task.id, parent.uid)

    assert store.get_task(task.id).calendar_id == "work"
    assert store.get_task(child.id).calendar_id == "work"


def test_moving_synced_task_to_other_calendar_queues_old_copy(store: TaskStore, account: Account) -> None:
    store.add_calendar(
        account.id,
        Calendar(id="work", display_name="Work", url="https://dav/work/", account_id=account.id),
    )
    parent = store.create_task(title="Work parent", calendar_id="work")
    task = store.create_task(title="Home task")
    child = store.create_task(title="Home child", parent_uid=task.uid)
    store.update_task(task.id, href="/task.ics", etag="e1", synced=True)
    store.update_task(child.id, href="/child.ics", etag="e2", synced=True)

    store.set_task_parent(task.id, parent.uid)

    for moved in (store.get_task(task.id), store.get_task(child.id)):
        assert (moved.calendar_id, moved.href, moved.etag, moved.synced) == ("work", None, None, False)
    pending = store.get_pending_deletions(HOME_CALENDAR_ID)
    assert sorted(p.href for p in pending) == ["/child.ics", "/task.ics"]


# ---------------------------------------------------------------------------
# Drag reorder
# ---------------------------------------------------------------------------


def test_reorder_moves_task_up(store: TaskStore) -> None:
    a = store.create_task(title="A")
    b = store.create_task(title="B")
    c = store.create_task(title="C")
    _mark_synced(store)

    assert store.reorder_tasks(c.id, a.id, flatten_tree(store.get_tasks())) is True

    assert _titles_in_order(store) == ["C", "A", "B"]
    assert sorted(t.sort_order for t in store.get_tasks()) == [100, 200, 300]
    assert all(not t.synced for t in store.get_tasks())


def test_reorder_moves_task_down(store: TaskStore) -> None:
    a = store.create_task(title="A")
    b = store.create_task(title="B")
    store.create_task(title="C")

    store.reorder_tasks(a.id, b.id, flatten_tree(store.get_tasks()))

    assert _titles_in_order(store) == ["B", "A", "C"]


def test_reorder_to_current_position_is_idempotent(store: TaskStore) -> None:
    store.create_task(title="A")
    b = store.create_task(title="B")
    store.create_task(title="C")

    store.reorder_tasks(b.id, b.id, flatten_tree(store.get_tasks()))
    first = _titles_in_order(store)
    store.reorder_tasks(b.id, b.id, flatten_tree(store.get_tasks()))

    assert first == ["A", "B", "C"]
    assert _titles_in_order(store) == ["A", "B", "C"]


def test_reorder_with_indent_nests_under_previous_item(store: TaskStore) -> None:
    store.create_task(title="A")
    b = store.create_task(title="B")
    c = store.create_task(title="C")

    store.reorder_tasks(c.id, c.id, flatten_tree(store.get_tasks()), target_indent=1)

    moved = store.get_task(c.id)
    assert moved.parent_uid == b.uid
    assert moved.sort_order == 100


def test_reorder_outdent_to_root(store: TaskStore) -> None:
    a = store.create_task(title="A")
    child = store.create_task(title="Child", parent_uid=a.uid)

    store.reorder_tasks(child.id, child.id, flatten_tree(store.get_tasks()), target_indent=0)

    assert store.get_task(child.id).parent_uid is None
    assert _titles_in_order(store) == ["A", "Child"]


def test_reorder_onto_own_descendant_is_rejected(store: TaskStore) -> None:
    a, b, c = _chain(store)
    before = store.get_tasks()

    assert store.reorder_tasks(a.id, c.id, flatten_tree(store.get_tasks()), target_indent=3) is False
    assert store.get_tasks() == before


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def test_ensure_tag_matches_case_insensitively(store: TaskStore) -> None:
    work = store.create_tag(name="Work")

    assert store.ensure_tag("work").id == work.id
    created = store.ensure_tag(" Urgent ")
    assert created.name == "Urgent"
    assert created.color.startswith("#")
    assert len(store.get_tags()) == 2


def test_delete_tag_detaches_it_everywhere(store: TaskStore) -> None:
    tag = store.create_tag(name="Gone")
    task = store.create_task(title="Tagged", tags=[tag.id])
    store.set_active_tag(tag.id)

    store.delete_tag(tag.id)

    assert store.get_task(task.id).tags == []
    assert store.ui.active_tag_id is None


def test_tag_membership_helpers(store: TaskStore) -> None:
    tag = store.create_tag(name="Errands")
    task = store.create_task(title="Post office")

    store.add_tag_to_task(task.id, tag.id)
    store.add_tag_to_task(task.id, tag.id)
    assert store.get_task(task.id).tags == [tag.id]
    assert store.get_tasks_by_tag(tag.id)[0].id == task.id

    store.remove_tag_from_task(task.id, tag.id)
    assert store.get_task(task.id).tags == []


def test_wire_task_renders_tag_names(store: TaskStore) -> None:
    work = store.create_tag(name="Work")
    urgent = store.create_tag(name="Urgent")
    task = store.create_task(title="Report", tags=[work.id, urgent.id])

    assert store.wire_task(task).categories == "Work,Urgent"
    assert store.get_task(task.id).categories is None


def test_import_resolves_categories_and_resets_identity(store: TaskStore, account: Account) -> None:
    records = [{"id": "x", "title": "Imported", "categories": "Home", "href": "/old", "synced": True}]

    [task] = store.import_tasks(records, calendar_id=HOME_CALENDAR_ID)

    assert task.id != "x"
    assert task.href is None and task.synced is False
    assert task.account_id == account.id
    assert [store.get_tag(t).name for t in task.tags] == ["Home"]


# ---------------------------------------------------------------------------
# Accounts, calendars and selection
# ---------------------------------------------------------------------------


def test_first_calendar_adopts_local_only_tasks() -> None:
    store = TaskStore()
    task = store.create_task(title="Before any account")
    account = store.create_account(name="New", server_url="https://dav", username="bob")

    store.add_calendar(account.id, Calendar(id="c1", display_name="Tasks", url="https://dav/c1/", account_id=""))

    adopted = store.get_task(task.id)
    assert adopted.calendar_id == "c1"
    assert adopted.account_id == account.id
    assert adopted.local_only is False
    assert store.get_calendar("c1").account_id == account.id


def test_delete_calendar_queues_deletions_and_resets_view(store: TaskStore, account: Account) -> None:
    task = store.create_task(title="Synced")
    store.update_task(task.id, href="/h1", synced=True)
    store.set_active_calendar(HOME_CALENDAR_ID)

    store.delete_calendar(account.id, HOME_CALENDAR_ID)

    assert store.get_calendar(HOME_CALENDAR_ID) is None
    assert store.get_tasks() == []
    assert [p.uid for p in store.get_pending_deletions(HOME_CALENDAR_ID)] == [task.uid]
    assert store.ui.active_calendar_id is None


def test_delete_account_cascades(store: TaskStore, account: Account) -> None:
    store.create_task(title="Gone with the account")
    store.set_active_calendar(HOME_CALENDAR_ID)

    store.delete_account(account.id)

    assert store.get_accounts() == []
    assert store.get_tasks() == []
    assert store.ui.active_calendar_id is None
    assert store.ui.active_account_id is None


def test_set_active_calendar_clears_tag_selection(store: TaskStore, account: Account) -> None:
    tag = store.create_tag(name="t")
    store.set_active_tag(tag.id)

    store.set_active_calendar(HOME_CALENDAR_ID)

    assert store.ui.active_tag_id is None
    assert store.ui.active_account_id == account.id


def test_set_calendars_skips_identical_lists(store: TaskStore, account: Account) -> None:
    events: list[int] = []
    store.subscribe(lambda: events.append(1))

    store.set_calendars(account.id, list(account.calendars))

    assert events == []


def test_snapshot_round_trip(store: TaskStore, account: Account) -> None:
    store.create_task(title="Persist me")
    store.create_tag(name="Tag")
    store.set_search_query("persist")

    restored = TaskStore(snapshot=store.snapshot())

    assert restored.snapshot().to_dict() == store.snapshot().to_dict()
