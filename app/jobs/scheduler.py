"""
Process-wide job scheduler.

Keeps a min-heap of (next run time, job) and sleeps until the earliest
one is due. A tick may report next_due_at (earliest pending work) to be
run again sooner than its fixed interval.
"""

import asyncio
import heapq
import itertools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MIN_DELAY_SECONDS = 1.0


@dataclass(slots=True)
class ScheduledJob:
    name: str
    tick: Callable[[], Awaitable[dict[str, Any]]]
    interval_seconds: float


def _hint_seconds(counters: dict[str, Any], now: datetime) -> float | None:
    """Seconds until the tick's next_due_at hint, if it reported one."""
    hint = counters.get("next_due_at") if counters else None
    if not hint:
        return None
    if isinstance(hint, str):
        try:
            hint = datetime.fromisoformat(hint)
        except ValueError:
            return None
    if hint.tzinfo is None:
        hint = hint.replace(tzinfo=UTC)
    return (hint - now).total_seconds()


class JobScheduler:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._jobs: dict[str, ScheduledJob] = {}
        self._heap: list[tuple[float, int, str]] = []
        self._seq = itertools.count()

    def add(self, job: ScheduledJob, delay: float = 0.0) -> None:
        if job.name in self._jobs:
            raise ValueError(f"Job '{job.name}' already scheduled")
        self._jobs[job.name] = job
        self._push(job.name, self._clock() + delay)

    def _push(self, name: str, due: float) -> None:
        heapq.heappush(self._heap, (due, next(self._seq), name))

    def next_delay(self, job: ScheduledJob, counters: dict[str, Any]) -> float:
        """Fixed interval, pulled earlier by a next_due_at hint, never below MIN_DELAY_SECONDS."""
        delay = job.interval_seconds
        hint = _hint_seconds(counters, datetime.now(UTC))
        if hint is not None:
            delay = min(delay, hint)
        return max(MIN_DELAY_SECONDS, delay)

    async def run_next(self) -> str | None:
        """Wait for the earliest due job, run it once and reschedule it."""
        if not self._heap:
            return None

        due, _, name = heapq.heappop(self._heap)
        wait = due - self._clock()
        if wait > 0:
            await self._sleep(wait)

        job = self._jobs[name]
        try:
            counters = await job.tick()
        except Exception as e:
            # ticks report their own failures; this only guards the scheduler
            logger.error("Scheduled tick raised", job=name, error=str(e), error_type=type(e).__name__)
            counters = {}

        self._push(name, self._clock() + self.next_delay(job, counters))
        return name

    async def run(self, max_runs: int | None = None) -> None:
        logger.info("Job scheduler started", jobs=sorted(self._jobs))
        runs = 0
        while self._heap and (max_runs is None or runs < max_runs):
            await self.run_next()
            runs += 1
