# tests/conftest.py

from __future__ import annotations

import pytest

from caldav_tasks.core.config import TaskDefaultsConfig
from caldav_tasks.core.models import Account, Calendar
from caldav_tasks.core.store import TaskStore
from caldav_tasks.core.sync import SyncEngine

from .fakes import FakeNetwork, FakeTransport

HOME_CALENDAR_ID = "https://dav.example.com/calendars/alice/home/"


@pytest.fixture()
def store() -> TaskStore:
    return TaskStore(defaults=TaskDefaultsConfig())


@pytest.fixture()
def account(store: TaskStore) -> Account:
    """Account "Personal" owning a single "Home" calendar."""
    created = store.create_account(
        name="Personal",
        server_url="https://dav.example.com",
        username="alice",
    )
    store.add_calendar(
        created.id,
        Calendar(
            id=HOME_CALENDAR_ID,
            display_name="Home",
            url=HOME_CALENDAR_ID,
            account_id=created.id,
        ),
    )
    return store.get_account(created.id)


@pytest.fixture()
def home(account: Account) -> Calendar:
    return account.calendars[0]


@pytest.fixture()
def transport(account: Account, home: Calendar) -> FakeTransport:
    """Fake server that already knows the Home calendar."""
    fake = FakeTransport()
    fake.calendars[account.id] = [home]
    return fake


@pytest.fixture()
def network() -> FakeNetwork:
    return FakeNetwork(online=True)


@pytest.fixture()
def engine(store: TaskStore, transport: FakeTransport, network: FakeNetwork) -> SyncEngine:
    return SyncEngine(store, transport, network)
