"""
Fire-and-forget view/download counters.

A read never waits on, or fails because of, its counter increment. Each
increment is a single ``UPDATE resources SET n = n + 1`` run in its own
session on a supervised task; failures are logged and counted, never raised.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from portfolio.core.metrics import (
    counter_increment_failures_total,
    counter_increments_dropped_total,
)
from portfolio.db.models.resource import Resource
from portfolio.db.session import SessionFactory

_log = structlog.get_logger(__name__)


class CounterKind(StrEnum):
    VIEW = "view_count"
    DOWNLOAD = "download_count"


class CounterDispatcher:
    """
    Bounded dispatcher for counter increments.

    Usage:
        counters = CounterDispatcher(session_factory, max_pending=100)
        counters.increment(resource_id, CounterKind.VIEW)
        ...
        await counters.drain()   # on shutdown, or in tests
    """

    def __init__(self, session_factory: SessionFactory, max_pending: int = 100) -> None:
        self._session_factory = session_factory
        self._max_pending = max_pending
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def increment(self, resource_id: str, kind: CounterKind) -> bool:
        """Schedule an increment. Returns False if it was dropped."""
        if len(self._tasks) >= self._max_pending:
            counter_increments_dropped_total.labels(counter=kind.value).inc()
            _log.warning(
                "counter_increment_dropped",
                resource_id=resource_id,
                counter=kind.value,
                pending=len(self._tasks),
            )
            return False

        task = asyncio.create_task(self._apply(resource_id, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _apply(self, resource_id: str, kind: CounterKind) -> None:
        column = getattr(Resource, kind.value)
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(Resource)
                    .where(Resource.id == resource_id)
                    .values({column: column + 1, Resource.updated_at: Resource.updated_at})
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            counter_increment_failures_total.labels(counter=kind.value).inc()
            _log.warning(
                "counter_increment_failed",
                resource_id=resource_id,
                counter=kind.value,
                error=str(exc),
            )

    async def drain(self) -> None:
        """Wait for every in-flight increment to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
