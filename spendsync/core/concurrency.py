"""
Coordination primitives for the sync pipeline.

- gather_settled: settle-all fan-in. Every awaitable runs to completion and
  each outcome is reported, so one account's failure never cancels another's.
- spawn_background: fire-and-forget tasks with their own error channel
  (log + metric). Callers never await them.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Coroutine, Generic, Iterable, List, Optional, Set, TypeVar

import structlog

from spendsync.core.metrics import BACKGROUND_TASK_FAILURES

logger = structlog.get_logger()

T = TypeVar("T")

_background_tasks: Set[asyncio.Task] = set()


@dataclass(frozen=True)
class Settled(Generic[T]):
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(awaitables: Iterable[Awaitable[T]]) -> List[Settled[T]]:
    """Wait for every awaitable to finish and return outcomes in input order."""
    outcomes = await asyncio.gather(*awaitables, return_exceptions=True)
    settled: List[Settled[T]] = []
    for outcome in outcomes:
        if isinstance(outcome, Exception):
            settled.append(Settled(error=outcome))
        elif isinstance(outcome, BaseException):
            # Cancellation and interpreter exits are not account failures
            raise outcome
        else:
            settled.append(Settled(value=outcome))
    return settled


def spawn_background(coro: Coroutine[Any, Any, Any], name: str, **log_context) -> asyncio.Task:
    """Schedule `coro` without awaiting it; failures are logged, never raised."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)

    def _on_done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.warning("background_task_cancelled", task=name, **log_context)
            return
        exc = t.exception()
        if exc is not None:
            BACKGROUND_TASK_FAILURES.labels(task=name).inc()
            logger.error(
                "background_task_failed",
                task=name,
                error=str(exc),
                error_type=type(exc).__name__,
                **log_context,
            )

    task.add_done_callback(_on_done)
    return task


def pending_background_tasks() -> int:
    return len(_background_tasks)


async def drain_background_tasks(timeout: Optional[float] = None) -> None:
    """Wait for outstanding background tasks (shutdown, tests)."""
    while True:
        pending = [t for t in _background_tasks if not t.done()]
        if not pending:
            break
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("background_tasks_still_running", count=len(not_done))
            return
    # Let done callbacks report before returning
    await asyncio.sleep(0)
