"""Periodic eligibility pass over trips nearing or past arrival."""

from typing import Any

from app.config import settings
from app.jobs.base import TickJob, run_forever
from app.services.eligibility_service import run_eligibility_pass


class EligibilityJob(TickJob):
    name = "eligibility"

    @property
    def interval_seconds(self) -> float:
        return settings.ELIGIBILITY_INTERVAL_SECONDS

    async def _tick(self) -> dict[str, Any]:
        return await run_eligibility_pass()


eligibility_job = EligibilityJob()


async def run_eligibility_job() -> dict:
    return await eligibility_job.run_once()


async def start_eligibility_scheduler():
    await run_forever(eligibility_job)
