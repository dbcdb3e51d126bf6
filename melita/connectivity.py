"""
Network reachability tracking.

The monitor probes the upstream host over HTTP and notifies subscribers on
an online -> offline transition. Hosts that receive platform notifications
can push them with mark_offline() / mark_online().
"""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

import httpx

from melita.config import settings, logger


class ConnectivityMonitor:
    """
    Tracks whether the upstream host is reachable.

    check() probes once and updates the flag. start() runs check() every
    poll_interval seconds until stop(). Subscribers are called on each
    online -> offline transition, whichever path detects it.
    """

    def __init__(
        self,
        probe_url: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._probe_url = probe_url or settings.CONNECTIVITY_PROBE_URL
        self._timeout = timeout if timeout is not None else settings.CONNECTIVITY_TIMEOUT_SECONDS
        self._poll_interval = poll_interval if poll_interval is not None else settings.CONNECTIVITY_POLL_SECONDS
        self._transport = transport
        self._online = True
        self._listeners: list[Callable[[], None]] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an offline callback. Returns the unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def mark_offline(self) -> None:
        if not self._online:
            return
        self._online = False
        logger.warning("Connectivity lost")
        for callback in list(self._listeners):
            callback()

    def mark_online(self) -> None:
        if not self._online:
            logger.info("Connectivity restored")
        self._online = True

    async def _probe(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                await client.head(self._probe_url)
            return True
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe failed: %s", exc)
            return False

    async def check(self) -> bool:
        """Probe the upstream host and update the online flag."""
        if await self._probe():
            self.mark_online()
        else:
            self.mark_offline()
        return self._online

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.check()
            except Exception as exc:
                logger.error("Connectivity check failed: %s", exc)

    def start(self) -> None:
        """Start background polling on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._watch())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


connectivity_monitor = ConnectivityMonitor()
