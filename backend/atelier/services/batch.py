from __future__ import annotations
"""Batch Concurrency Controller — bounded, settled execution of coroutine factories.

Tasks run in fixed-size groups. Each task gets its own timeout; a timeout
only stops waiting locally, the remote job keeps running and will be picked
up by its callback or the stuck sweep.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from atelier.config import get_settings

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]
ProgressCallback = Callable[[int, int], Any]


class TaskTimeout(Exception):
    """A batched task exceeded its per-task timeout."""


@dataclass
class TaskOutcome:
    """Settled result of one task, in input order."""
    index: int
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


async def _run_one(index: int, factory: TaskFactory, timeout: float | None) -> TaskOutcome:
    try:
        if timeout and timeout > 0:
            try:
                value = await asyncio.wait_for(factory(), timeout=timeout)
            except asyncio.TimeoutError:
                raise TaskTimeout(f"Task timed out after {timeout:g}s") from None
        else:
            value = await factory()
        return TaskOutcome(index=index, ok=True, value=value)
    except Exception as exc:
        logger.warning("Batched task %d failed: %s", index, exc)
        return TaskOutcome(index=index, ok=False, error=exc)


async def run_batched(
    tasks: Sequence[TaskFactory],
    max_concurrent: int | None = None,
    per_task_timeout: float | None = None,
    on_batch_complete: ProgressCallback | None = None,
    cooldown: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[TaskOutcome]:
    """Run ``tasks`` at most ``max_concurrent`` at a time.

    Args:
        tasks: zero-argument callables returning awaitables.
        max_concurrent: group size (default BATCH_MAX_CONCURRENT).
        per_task_timeout: seconds per task, <= 0 disables (default BATCH_TASK_TIMEOUT).
        on_batch_complete: called as ``(completed, total)`` after every group;
            may be sync or async. Its failures are logged, never propagated.
        cooldown: pause between groups (default BATCH_COOLDOWN).

    Returns:
        One ``TaskOutcome`` per task, in input order. A failing task never
        prevents later tasks from running.
    """
    settings = get_settings()
    if max_concurrent is None:
        max_concurrent = settings.BATCH_MAX_CONCURRENT
    if per_task_timeout is None:
        per_task_timeout = settings.BATCH_TASK_TIMEOUT
    if cooldown is None:
        cooldown = settings.BATCH_COOLDOWN
    max_concurrent = max(1, int(max_concurrent))

    total = len(tasks)
    outcomes: list[TaskOutcome] = []

    for start in range(0, total, max_concurrent):
        group = tasks[start:start + max_concurrent]
        settled = await asyncio.gather(
            *(_run_one(start + i, factory, per_task_timeout) for i, factory in enumerate(group))
        )
        outcomes.extend(settled)

        if on_batch_complete is not None:
            try:
                maybe = on_batch_complete(len(outcomes), total)
                if inspect.isawaitable(maybe):
                    await maybe
            except Exception:
                logger.warning("Batch progress callback failed", exc_info=True)

        if start + max_concurrent < total and cooldown > 0:
            await sleep(cooldown)

    failed = sum(1 for o in outcomes if not o.ok)
    logger.info("Batch finished: %d task(s), %d failed", total, failed)
    return outcomes
