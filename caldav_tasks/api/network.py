"""Connectivity monitor used to gate sync while offline."""

import inspect
import logging
from collections.abc import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

StatusCallback = Callable[[], Awaitable[None] | None]


class NetworkMonitor:
    """Tracks online/offline state by probing a URL with a HEAD request.

    Any HTTP response counts as online; connection errors and timeouts count
    as offline. Callbacks fire only on transitions.
    """

    def __init__(
        self,
        probe_url: str,
        timeout: float = 5.0,
        on_online: StatusCallback | None = None,
        on_offline: StatusCallback | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.probe_url = probe_url
        self.timeout = timeout
        self.on_online = on_online
        self.on_offline = on_offline
        self._transport = transport
        self._online = True

    @property
    def is_online(self) -> bool:
        return self._online

    async def _probe(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                await client.head(self.probe_url)
            return True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False

    async def check(self) -> bool:
        """Probe connectivity, update state and fire transition callbacks."""
        online = await self._probe()
        was_online = self._online
        self._online = online

        if online and not was_online:
            logger.info("Back online")
            await self._fire(self.on_online)
        elif was_online and not online:
            logger.info("Gone offline, changes will be synced when back online")
            await self._fire(self.on_offline)
        return online

    @staticmethod
    async def _fire(callback: StatusCallback | None) -> None:
        if callback is None:
            return
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Network status callback failed: {exc}", exc_info=True)
