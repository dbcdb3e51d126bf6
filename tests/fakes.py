"""Fakes shared by the Melita tests."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Optional

import httpx

from melita.connectivity import ConnectivityMonitor
from melita.models import AnalysisResult


SAMPLE_RESULT = AnalysisResult(
    explanation="Iterates once over the list.",
    mermaidGraph="graph TD; A[Start] --> B[Loop] --> C[End]",
    timeComplexity="O(n)",
    spaceComplexity="O(1)",
    optimizationTip="Already optimal.",
)


class FakeModels:
    def __init__(self, reply: Optional[str] = None, error: Optional[BaseException] = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def generate_content(self, model: str, contents: Any, config: Any = None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.reply)


class FakeGenaiClient:
    """Stands in for google.genai.Client; only the aio.models surface is used."""

    def __init__(self, reply: Optional[str] = None, error: Optional[BaseException] = None):
        self.models = FakeModels(reply=reply, error=error)
        self.aio = SimpleNamespace(models=self.models)


class ScriptedClient:
    """Analysis client whose calls block until released."""

    def __init__(self, result: AnalysisResult = SAMPLE_RESULT, delay: float = 0.0, error: Optional[Exception] = None):
        self.result = result
        self.delay = delay
        self.error = error
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.blocking = False

    async def request_analysis(self, code: str) -> AnalysisResult:
        self.calls.append(code)
        self.started.set()
        try:
            if self.blocking:
                await self.release.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled.append(code)
            raise
        if self.error is not None:
            raise self.error
        return self.result


def online_monitor() -> ConnectivityMonitor:
    transport = httpx.MockTransport(lambda request: httpx.Response(200))
    return ConnectivityMonitor(probe_url="https://probe.test", transport=transport)


def offline_monitor() -> ConnectivityMonitor:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network unreachable", request=request)

    return ConnectivityMonitor(probe_url="https://probe.test", transport=httpx.MockTransport(handler))
