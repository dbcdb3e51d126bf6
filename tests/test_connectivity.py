"""Tests for the connectivity monitor and its background poller."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from fakes import ScriptedClient
from melita.connectivity import ConnectivityMonitor
from melita.exceptions import ConnectivityError
from melita.orchestrator import CONNECTION_LOST_MESSAGE, AnalysisOrchestrator


class Network:
    """Mock transport handler that can be switched off."""

    def __init__(self) -> None:
        self.up = True
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if not self.up:
            raise httpx.ConnectError("network unreachable", request=request)
        return httpx.Response(200)

    def monitor(self, poll_interval: float = 0.01) -> ConnectivityMonitor:
        return ConnectivityMonitor(
            probe_url="https://probe.test",
            poll_interval=poll_interval,
            transport=httpx.MockTransport(self),
        )


def test_check_tracks_reachability() -> None:
    network = Network()
    monitor = network.monitor()
    lost = []
    monitor.subscribe(lambda: lost.append(True))

    async def scenario() -> None:
        assert await monitor.check() is True
        network.up = False
        assert await monitor.check() is False
        assert await monitor.check() is False
        network.up = True
        assert await monitor.check() is True

    asyncio.run(scenario())

    assert lost == [True]


def test_unsubscribe_stops_notifications() -> None:
    monitor = Network().monitor()
    lost = []
    unsubscribe = monitor.subscribe(lambda: lost.append(True))

    unsubscribe()
    unsubscribe()
    monitor.mark_offline()

    assert monitor.online is False
    assert lost == []


@pytest.mark.parametrize(
    "error",
    [httpx.TooManyRedirects, httpx.DecodingError, httpx.ReadTimeout],
)
def test_check_treats_any_http_error_as_offline(error: type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error("upstream misbehaved", request=request)

    monitor = ConnectivityMonitor(probe_url="https://probe.test", transport=httpx.MockTransport(handler))

    assert asyncio.run(monitor.check()) is False
    assert monitor.online is False


def test_poller_keeps_running_after_http_error() -> None:
    failures = []

    def handler(request: httpx.Request) -> httpx.Response:
        if not failures:
            failures.append(request)
            raise httpx.TooManyRedirects("redirect loop", request=request)
        return httpx.Response(200)

    monitor = ConnectivityMonitor(
        probe_url="https://probe.test", poll_interval=0.01, transport=httpx.MockTransport(handler)
    )

    async def scenario() -> None:
        monitor.start()
        await asyncio.sleep(0.2)
        assert monitor._task is not None
        assert not monitor._task.done()
        assert monitor.online is True
        await monitor.stop()

    asyncio.run(scenario())

    assert len(failures) == 1
    assert monitor._task is None


def test_poller_aborts_in_flight_analysis_when_network_drops() -> None:
    network = Network()
    monitor = network.monitor(poll_interval=0.01)
    client = ScriptedClient()
    client.blocking = True
    orchestrator = AnalysisOrchestrator(client=client, connectivity=monitor, timeout=5)

    async def scenario() -> None:
        monitor.start()
        task = asyncio.ensure_future(orchestrator.analyze("x = 1"))
        await client.started.wait()

        network.up = False
        with pytest.raises(ConnectivityError) as exc_info:
            await asyncio.wait_for(task, timeout=2)
        assert exc_info.value.message == CONNECTION_LOST_MESSAGE

        await monitor.stop()

    asyncio.run(scenario())

    assert monitor._task is None
    assert monitor.online is False
    assert orchestrator.state.error == CONNECTION_LOST_MESSAGE
    assert orchestrator.state.is_analyzing is False
    assert client.cancelled == ["x = 1"]


def test_start_is_idempotent() -> None:
    monitor = Network().monitor(poll_interval=10)

    async def scenario() -> None:
        monitor.start()
        task = monitor._task
        monitor.start()
        assert monitor._task is task
        await monitor.stop()
        await monitor.stop()

    asyncio.run(scenario())

    assert monitor._task is None
