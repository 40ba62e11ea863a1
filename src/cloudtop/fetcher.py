"""Concurrent fan-out/fan-in over a list of parent resources.

:func:`fetch_all` runs one child fetch per parent as an :class:`asyncio.Task`
and merges the children once every task has finished.  The merge never
depends on completion order: children are concatenated in parent input
order, then child order, and deduplicated by key keeping the first one seen.

Used for pipelines across core instances (``cloudtop get pipelines``) and
per-agent metrics in the dashboard.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Any, Awaitable, Callable, Generic, Hashable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")
C = TypeVar("C")


@dataclass(frozen=True)
class FetchResult(Generic[C]):
    """Outcome of :func:`fetch_all_result`: the merged items or the error.

    ``items`` is empty whenever ``error`` is set; partial results are never
    exposed.
    """

    items: tuple[C, ...] = field(default_factory=tuple)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def fetch_all(
    parents: Iterable[P],
    fetch_child: Callable[[P], Awaitable[Iterable[C]]],
    key: Callable[[C], Hashable] = attrgetter("id"),
    limit: Optional[int] = None,
) -> list[C]:
    """Fetch the children of every parent concurrently and merge them.

    Args:
        parents: Parent resources, in the order that defines the merge.
        fetch_child: Coroutine function returning the children of a parent.
        key: Identity of a child used for deduplication.  Defaults to its
            ``id`` attribute.
        limit: Maximum number of child fetches in flight.  ``None`` starts
            every fetch at once.

    Returns:
        Children in parent-then-child order, first occurrence of each key
        only.

    Raises:
        Exception: The first child fetch error.  Every sibling still running
            is cancelled and awaited before it propagates.
    """
    parents = list(parents)
    if not parents:
        return []

    semaphore = asyncio.Semaphore(limit) if limit else None

    async def run(parent: P) -> list[C]:
        if semaphore is None:
            return list(await fetch_child(parent))
        async with semaphore:
            return list(await fetch_child(parent))

    tasks = [asyncio.ensure_future(run(parent)) for parent in parents]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    seen: set[Hashable] = set()
    merged: list[C] = []
    for task in tasks:
        for child in task.result():
            child_key = key(child)
            if child_key in seen:
                continue
            seen.add(child_key)
            merged.append(child)
    logger.debug("fetched %d children from %d parents", len(merged), len(parents))
    return merged


async def fetch_all_result(
    parents: Iterable[P],
    fetch_child: Callable[[P], Awaitable[Iterable[C]]],
    **kwargs: Any,
) -> FetchResult[C]:
    """Like :func:`fetch_all` but returns the error in a :class:`FetchResult`."""
    try:
        items = await fetch_all(parents, fetch_child, **kwargs)
    except Exception as exc:
        return FetchResult(error=exc)
    return FetchResult(items=tuple(items))
