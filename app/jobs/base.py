"""
Common shape of the pipeline's background jobs.

Each job is one tick function over the shared datastore. run_once never
raises: failures are logged and reported in the returned counters.
"""

import asyncio
import os
import socket
import time
from typing import Any

import structlog

from app.infrastructure.observability.logging import get_logger, log_tick

logger = get_logger(__name__)


def worker_identity(job_name: str) -> str:
    return f"{job_name}-{socket.gethostname()}-{os.getpid()}"


class TickJob:
    """Base class: subclasses implement _tick() and set name/interval."""

    name = "job"

    def __init__(self):
        self.is_running = False
        self.worker_id = worker_identity(self.name)

    @property
    def interval_seconds(self) -> float:
        raise NotImplementedError

    async def _tick(self) -> dict[str, Any]:
        raise NotImplementedError

    async def run_once(self) -> dict[str, Any]:
        """
        Run a single tick.

        Returns:
            Dict: tick counters, plus ok/error
        """
        if self.is_running:
            logger.warning("Job already running, skipping this iteration", job=self.name)
            return {"ok": True, "skipped": True, "reason": "already_running"}

        self.is_running = True
        started = time.perf_counter()
        try:
            with structlog.contextvars.bound_contextvars(job=self.name, worker_id=self.worker_id):
                counters = {"ok": True, **await self._tick()}
        except Exception as e:
            logger.error(
                "Job tick raised", job=self.name, error=str(e), error_type=type(e).__name__
            )
            counters = {"ok": False, "error": str(e), "error_type": type(e).__name__}
        finally:
            self.is_running = False

        log_tick(self.name, counters, (time.perf_counter() - started) * 1000)
        return counters


async def run_forever(job: TickJob) -> None:
    """Tick, sleep the job's interval, repeat. Used when a process runs one job."""
    logger.info("Starting job loop", job=job.name, interval_seconds=job.interval_seconds)

    while True:
        try:
            await job.run_once()
            await asyncio.sleep(job.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Job loop cancelled", job=job.name)
            raise
        except Exception as e:
            logger.error("Error in job loop", job=job.name, error=str(e), error_type=type(e).__name__)
            # avoid a tight error loop
            await asyncio.sleep(60)
