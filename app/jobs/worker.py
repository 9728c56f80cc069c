"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the appropriate scheduler. The special name
"all" runs every job in this process under one JobScheduler.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.base import TickJob
from app.jobs.claim_check_job import claim_check_job, start_claim_check_scheduler
from app.jobs.claim_queue_job import claim_queue_job, start_claim_queue_scheduler
from app.jobs.eligibility_job import eligibility_job, start_eligibility_scheduler
from app.jobs.notification_job import notification_job, start_notification_scheduler
from app.jobs.scheduler import JobScheduler, ScheduledJob
from app.jobs.trip_link_job import start_trip_link_scheduler, trip_link_job

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "eligibility": start_eligibility_scheduler,
    "trip_link": start_trip_link_scheduler,
    "claim_queue": start_claim_queue_scheduler,
    "claim_check": start_claim_check_scheduler,
    "notifications": start_notification_scheduler,
}

ALL_JOBS: tuple[TickJob, ...] = (
    eligibility_job,
    trip_link_job,
    claim_queue_job,
    claim_check_job,
    notification_job,
)


def build_scheduler(jobs: tuple[TickJob, ...] = ALL_JOBS) -> JobScheduler:
    scheduler = JobScheduler()
    for job in jobs:
        scheduler.add(ScheduledJob(job.name, job.run_once, job.interval_seconds))
    return scheduler


async def run_all_jobs() -> None:
    await build_scheduler().run()


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "all").strip().lower()


def _get_job(name: str) -> JobCoroutine:
    if name == "all":
        return run_all_jobs
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted([*JOB_REGISTRY.keys(), 'all']))}"
        )
    return JOB_REGISTRY[name]


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    job = _get_job(name)

    logger.info("Starting background worker", job=name, submit_live=settings.SUBMIT_LIVE)
    await db_pool.initialize()
    try:
        await job()
    finally:
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging("DEBUG" if settings.debug else "INFO")
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
