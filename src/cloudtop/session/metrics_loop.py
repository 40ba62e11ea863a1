"""Periodic, cancellable metrics refresh for the project view.

A :class:`MetricsRefreshLoop` fetches immediately when started and then
once every ``tick`` seconds until cancelled.  Only the first fetch may
report a failure; later failures are logged and the previous snapshot stays
on screen.

Results are delivered two ways: to an optional ``on_result`` callback, and
through the :meth:`MetricsRefreshLoop.results` async iterator backed by an
:class:`asyncio.Queue`.  Nothing is delivered once :meth:`~MetricsRefreshLoop.cancel`
has been called.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from cloudtop.models import MetricsSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricsFetched:
    snapshot: MetricsSnapshot
    is_refresh: bool


@dataclass(frozen=True)
class MetricsFailed:
    """The first fetch failed; the loop stops after reporting it."""

    error: Exception


MetricsResult = Union[MetricsFetched, MetricsFailed]

_CLOSED = object()


class MetricsRefreshLoop:
    """Re-run *fetch* every *tick* seconds on the running event loop.

    Args:
        fetch: Coroutine function returning a fresh snapshot.
        tick: Seconds between the end of one fetch and the start of the next.
        on_result: Called synchronously with every delivered result.
        sleep: Awaitable sleep, injectable for tests.

    Example::

        loop = MetricsRefreshLoop(lambda: client.project_metrics(pid, -60, 30), 5.0)
        loop.start()
        async for result in loop.results():
            ...
        await loop.aclose()
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[MetricsSnapshot]],
        tick: float,
        on_result: Optional[Callable[[MetricsResult], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetch = fetch
        self._tick = tick
        self._on_result = on_result
        self._sleep = sleep
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> MetricsRefreshLoop:
        """Schedule the loop on the running event loop.  Returns ``self``."""
        if self._task is not None:
            raise RuntimeError("metrics refresh loop already started")
        self._task = asyncio.ensure_future(self._run())
        return self

    def cancel(self) -> None:
        """Stop the loop.  Results not yet consumed are discarded."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def aclose(self) -> None:
        """Cancel the loop and wait for its task to finish."""
        self.cancel()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def results(self) -> AsyncIterator[MetricsResult]:
        """Yield results until the loop is cancelled or stops."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    def _emit(self, result: MetricsResult) -> None:
        if self._cancelled:
            return
        self._queue.put_nowait(result)
        if self._on_result is not None:
            self._on_result(result)

    async def _run(self) -> None:
        is_refresh = False
        try:
            while not self._cancelled:
                try:
                    snapshot = await self._fetch()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    if not is_refresh:
                        self._emit(MetricsFailed(exc))
                        return
                    logger.debug("metrics refresh failed, keeping last snapshot: %s", exc)
                else:
                    self._emit(MetricsFetched(snapshot, is_refresh))
                is_refresh = True
                await self._sleep(self._tick)
        finally:
            if not self._cancelled:
                self._queue.put_nowait(_CLOSED)
