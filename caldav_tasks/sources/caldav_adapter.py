"""CalDAV transport built on the caldav library.

The caldav client is synchronous, so every network call runs in a worker
thread via ``asyncio.to_thread``.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import caldav
from caldav import DAVClient
from caldav.elements import cdav, dav
from caldav.elements.base import ValuedBaseElement
from caldav.elements.ical import CalendarColor
from caldav.lib.error import AuthorizationError

from caldav_tasks.core.errors import AuthenticationError, NotConnectedError, TransportError
from caldav_tasks.core.ical import task_to_vtodo, vtodo_to_task
from caldav_tasks.core.models import Account, Calendar, ServerType, Task
from caldav_tasks.core.transport import CreateResult, UpdateResult

logger = logging.getLogger(__name__)


class GetCTag(ValuedBaseElement):
    tag = "{http://calendarserver.org/ns/}getctag"


CALENDAR_QUERY = """<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:getetag/>
    <c:calendar-data/>
  </d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="VTODO"/>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>"""


def principal_url(account: Account) -> str | None:
    """Principal URL for servers with a fixed layout; None means discover it."""
    base = account.server_url.rstrip("/")
    user = quote(account.username)
    if account.server_type == ServerType.RUSTICAL:
        return f"{base}/caldav/principal/{user}/"
    if account.server_type == ServerType.RADICALE:
        return f"{base}/{user}/"
    if account.server_type == ServerType.BAIKAL:
        return f"{base}/dav.php/principals/{user}/"
    if account.server_type == ServerType.NEXTCLOUD:
        return f"{base}/remote.php/dav/principals/users/{user}/"
    return None


def _strip_etag(value: Any) -> str:
    return str(value or "").strip().strip('"')


class CalDAVTransport:
    """Transport client keeping one DAVClient and principal per account."""

    def __init__(
        self,
        timeout: int = 30,
        password_lookup: Callable[[str], str | None] | None = None,
    ):
        self.timeout = timeout
        # Resolves account id -> password when the account carries none
        self.password_lookup = password_lookup
        self._clients: dict[str, DAVClient] = {}
        self._principals: dict[str, Any] = {}

    def is_connected(self, account_id: str) -> bool:
        return account_id in self._clients

    def _client(self, account_id: str) -> DAVClient:
        client = self._clients.get(account_id)
        if client is None:
            raise NotConnectedError(account_id)
        return client

    async def reconnect(self, account: Account) -> None:
        """Open a session for ``account`` and verify it by loading the principal."""
        logger.debug(f"Connecting to CalDAV server: {account.server_url}")
        password = account.password
        if not password and self.password_lookup is not None:
            password = self.password_lookup(account.id) or ""

        def _connect():
            client = DAVClient(
                url=account.server_url,
                username=account.username,
                password=password,
                timeout=self.timeout,
            )
            url = principal_url(account)
            if url is None:
                # Generic servers: RFC 6764 discovery from the well-known URL
                client.url = client.url.join("/.well-known/caldav")
                principal = client.principal()
            else:
                principal = caldav.Principal(client=client, url=url)
                principal.get_display_name()
            return client, principal

        try:
            client, principal = await asyncio.to_thread(_connect)
        except AuthorizationError as e:
            self.disconnect(account.id)
            raise AuthenticationError(f"Authentication failed for {account.username}") from e
        except Exception as e:
            self.disconnect(account.id)
            raise TransportError(f"Failed to connect to {account.server_url}: {e}") from e

        self._clients[account.id] = client
        self._principals[account.id] = principal
        logger.info(f"Connected to CalDAV server: {account.server_url}")

    def disconnect(self, account_id: str) -> None:
        self._clients.pop(account_id, None)
        self._principals.pop(account_id, None)

    async def fetch_calendars(self, account_id: str) -> list[Calendar]:
        """List the account's task (VTODO) calendars."""
        self._client(account_id)
        principal = self._principals[account_id]

        def _fetch():
            found = []
            for cal in principal.calendars():
                try:
                    components = cal.get_supported_components()
                except Exception as e:
                    logger.debug(f"Could not read components of {cal.url}: {e}")
                    components = None
                if components and "VTODO" not in [c.upper() for c in components]:
                    continue
                props = cal.get_properties(
                    [dav.DisplayName(), CalendarColor(), GetCTag(), dav.SyncToken()]
                )
                found.append((cal, components, props))
            return found

        try:
            found = await asyncio.to_thread(_fetch)
        except Exception as e:
            raise TransportError(f"Failed to list calendars: {e}") from e

        calendars = []
        for cal, components, props in found:
            color = props.get(CalendarColor.tag)
            calendars.append(
                Calendar(
                    id=str(cal.url),
                    display_name=props.get(dav.DisplayName.tag) or cal.name or "Tasks",
                    url=str(cal.url),
                    account_id=account_id,
                    ctag=props.get(GetCTag.tag),
                    sync_token=props.get(dav.SyncToken.tag),
                    # Apple clients append an alpha channel (#RRGGBBAA)
                    color=color[:7] if color else None,
                    supported_components=list(components) if components else None,
                )
            )
        logger.info(f"Found {len(calendars)} task calendars")
        return calendars

    async def fetch_tasks(self, account_id: str, calendar: Calendar) -> list[Task]:
        """Fetch every VTODO of ``calendar`` with its etag."""
        client = self._client(account_id)

        def _report():
            response = client.report(calendar.url, CALENDAR_QUERY, depth=1)
            return response.expand_simple_props([dav.GetEtag(), cdav.CalendarData()])

        try:
            results = await asyncio.to_thread(_report)
        except Exception as e:
            raise TransportError(f"Failed to fetch tasks from {calendar.display_name}: {e}") from e

        tasks = []
        for href, props in results.items():
            data = props.get(cdav.CalendarData.tag)
            if not data:
                continue
            task = vtodo_to_task(
                data,
                account_id,
                calendar.id,
                href=str(href),
                etag=_strip_etag(props.get(dav.GetEtag.tag)),
            )
            if task is not None:
                tasks.append(task)
        return tasks

    async def _put(self, account_id: str, url: str, body: str, headers: dict[str, str]):
        client = self._client(account_id)
        headers = {"Content-Type": "text/calendar; charset=utf-8", **headers}
        return await asyncio.to_thread(client.put, url, body, headers)

    async def create_task(self, account_id: str, calendar: Calendar, task: Task) -> CreateResult | None:
        href = f"{calendar.url.rstrip('/')}/{quote(task.uid, safe='@')}.ics"
        try:
            response = await self._put(account_id, href, task_to_vtodo(task), {"If-None-Match": "*"})
        except NotConnectedError:
            raise
        except Exception as e:
            logger.error(f"Failed to create task '{task.title}': {e}")
            return None

        if response.status not in (200, 201, 204):
            logger.error(f"Server refused task '{task.title}': HTTP {response.status}")
            return None
        logger.info(f"Created TODO: {href}")
        return CreateResult(href=href, etag=_strip_etag(response.headers.get("ETag")))

    async def update_task(self, account_id: str, task: Task) -> UpdateResult | None:
        if not task.href:
            return None
        url = str(self._client(account_id).url.join(task.href))
        headers = {"If-Match": f'"{task.etag}"'} if task.etag else {}
        try:
            response = await self._put(account_id, url, task_to_vtodo(task), headers)
        except NotConnectedError:
            raise
        except Exception as e:
            logger.error(f"Failed to update task '{task.title}': {e}")
            return None

        if response.status not in (200, 201, 204):
            logger.error(f"Server refused update of '{task.title}': HTTP {response.status}")
            return None
        logger.info(f"Updated TODO: {task.href}")
        return UpdateResult(etag=_strip_etag(response.headers.get("ETag")))

    async def delete_task(self, account_id: str, href: str, etag: str | None = None) -> bool:
        client = self._client(account_id)
        url = str(client.url.join(href))

        def _delete():
            headers = {"If-Match": f'"{etag}"'} if etag else {}
            return client.request(url, "DELETE", "", headers)

        try:
            response = await asyncio.to_thread(_delete)
        except Exception as e:
            logger.error(f"Failed to delete TODO {href}: {e}")
            return False

        # Already gone counts as deleted
        if response.status in (200, 204, 404, 410):
            logger.info(f"Deleted TODO: {href}")
            return True
        logger.error(f"Server refused deletion of {href}: HTTP {response.status}")
        return False
