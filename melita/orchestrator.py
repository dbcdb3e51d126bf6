"""
Request orchestration: one cancellable, time-bounded analysis at a time.

Starting a new analysis cancels the previous one (last request wins). Each
request is tied to a RequestHandle; only the current handle may write the
shared AnalysisState, so a stale request never overwrites a newer one.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from melita.config import settings, logger
from melita.connectivity import ConnectivityMonitor, connectivity_monitor
from melita.exceptions import (
    AnalysisCancelled,
    AnalysisError,
    AnalysisTimeoutError,
    ConnectivityError,
)
from melita.gemini_provider import GeminiProvider, gemini_provider
from melita.models import AnalysisResult, AnalysisState, CancelReason, HistoryItem


NO_CONNECTION_MESSAGE = "🌐 No internet connection detected. Please connect to the network and try again."
CONNECTION_LOST_MESSAGE = "⚠️ Internet connection lost! Please check your network connection."
UNEXPECTED_MESSAGE = "An unexpected error occurred."


def timeout_message(seconds: float) -> str:
    return (
        f"⏳ The operation took too long ({seconds:g}s). "
        "Your code may be too complex or the server is unresponsive."
    )


@dataclass(eq=False)
class RequestHandle:
    """Cancellation token for one in-flight analysis."""

    id: int
    reason: Optional[CancelReason] = None
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    def cancel(self, reason: CancelReason) -> bool:
        """Record the reason and fire the signal. First reason wins."""
        if self.reason is not None:
            return False
        self.reason = reason
        self._cancelled.set()
        return True

    async def wait_cancelled(self) -> CancelReason:
        await self._cancelled.wait()
        return self.reason


class AnalysisOrchestrator:
    """
    Runs one analysis at a time against the Gemini client.

    A new analyze() supersedes the one in flight. Each request races its
    timeout, stop() and connectivity loss, and only the current request may
    write to state. Successful results are added to a bounded history.
    """

    def __init__(
        self,
        client: Optional[GeminiProvider] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        timeout: Optional[float] = None,
        history_limit: Optional[int] = None,
    ):
        self._client = client or gemini_provider
        self._connectivity = connectivity or connectivity_monitor
        self._timeout = timeout if timeout is not None else settings.ANALYSIS_TIMEOUT_SECONDS
        self._history: deque[HistoryItem] = deque(maxlen=history_limit or settings.HISTORY_LIMIT)
        self._state = AnalysisState()
        self._current: Optional[RequestHandle] = None
        self._next_id = 0

    @property
    def state(self) -> AnalysisState:
        return self._state.model_copy()

    @property
    def history(self) -> list[HistoryItem]:
        return list(self._history)

    @property
    def current(self) -> Optional[RequestHandle]:
        return self._current

    def _is_current(self, handle: RequestHandle) -> bool:
        return self._current is handle

    def _commit(self, handle: RequestHandle, **changes) -> bool:
        """Apply a terminal state transition if handle is still current."""
        if not self._is_current(handle):
            logger.debug("Discarding update from stale request %d", handle.id)
            return False
        self._state = self._state.model_copy(update={"is_analyzing": False, **changes})
        self._current = None
        return True

    def _on_offline(self) -> None:
        handle = self._current
        if handle is not None and handle.cancel(CancelReason.OFFLINE):
            logger.warning("Request %d aborted: connectivity lost", handle.id)
            self._commit(handle, error=CONNECTION_LOST_MESSAGE)

    def stop(self) -> None:
        """Cancel the current analysis. Its result will never be committed."""
        handle = self._current
        if handle is not None and handle.cancel(CancelReason.STOP):
            logger.info("Request %d stopped by user", handle.id)
            self._commit(handle)
        self._current = None
        self._state = self._state.model_copy(update={"is_analyzing": False})

    async def analyze(self, code: str) -> AnalysisResult:
        """
        Run one analysis, racing it against the timeout and cancellation.

        Raises:
            ConnectivityError: Offline before start or connection lost
            AnalysisTimeoutError: The call exceeded the time budget
            AnalysisCancelled: Stopped by the user or superseded
            AnalysisError: Anything unexpected from the client
        """
        if not await self._connectivity.check():
            logger.error("Analysis refused: no connectivity")
            self._state = self._state.model_copy(update={"error": NO_CONNECTION_MESSAGE})
            raise ConnectivityError(NO_CONNECTION_MESSAGE)

        if self._current is not None:
            logger.info("Request %d superseded", self._current.id)
            self._current.cancel(CancelReason.SUPERSEDED)

        self._next_id += 1
        handle = RequestHandle(id=self._next_id)
        self._current = handle
        self._state = AnalysisState(is_analyzing=True, request_id=handle.id)

        start = time.monotonic()
        logger.info("Request %d started - code length: %d chars", handle.id, len(code))

        unsubscribe = self._connectivity.subscribe(self._on_offline)
        work = asyncio.ensure_future(self._client.request_analysis(code))
        signal = asyncio.ensure_future(handle.wait_cancelled())
        try:
            done, _ = await asyncio.wait(
                {work, signal},
                timeout=self._timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            if handle.cancel(CancelReason.STOP):
                self._commit(handle)
            raise
        finally:
            unsubscribe()
            signal.cancel()

        if work in done and not handle.cancelled:
            return self._complete(handle, work, code, start)

        work.cancel()
        if not done:
            handle.cancel(CancelReason.TIMEOUT)
            logger.error("Request %d timed out after %gs", handle.id, self._timeout)
            self._commit(handle, error=timeout_message(self._timeout))

        reason = handle.reason
        if reason is CancelReason.TIMEOUT:
            raise AnalysisTimeoutError(timeout_message(self._timeout))
        if reason is CancelReason.OFFLINE:
            raise ConnectivityError(CONNECTION_LOST_MESSAGE)
        raise AnalysisCancelled(reason)

    def _complete(
        self,
        handle: RequestHandle,
        work: asyncio.Future,
        code: str,
        start: float,
    ) -> AnalysisResult:
        elapsed = time.monotonic() - start
        try:
            result = work.result()
        except Exception as exc:
            logger.error("Request %d failed after %.3fs: %s", handle.id, elapsed, exc)
            self._commit(handle, error=UNEXPECTED_MESSAGE)
            raise AnalysisError(UNEXPECTED_MESSAGE) from exc

        self._commit(handle, result=result, error=None)
        self._history.appendleft(
            HistoryItem(
                id=uuid.uuid4().hex,
                timestamp=int(time.time() * 1000),
                code=code,
                response=result,
            )
        )
        logger.info(
            "Request %d completed in %.3fs - time: %s, space: %s",
            handle.id,
            elapsed,
            result.timeComplexity,
            result.spaceComplexity,
        )
        return result
