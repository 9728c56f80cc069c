"""Periodic Darwin linking pass over unlinked trips."""

from typing import Any

from app.config import settings
from app.jobs.base import TickJob, run_forever
from app.services.trip_linker_service import run_link_pass


class TripLinkJob(TickJob):
    name = "trip_link"

    @property
    def interval_seconds(self) -> float:
        return settings.TRIP_LINK_INTERVAL_SECONDS

    async def _tick(self) -> dict[str, Any]:
        return await run_link_pass()


trip_link_job = TripLinkJob()


async def run_trip_link_job() -> dict:
    return await trip_link_job.run_once()


async def start_trip_link_scheduler():
    await run_forever(trip_link_job)
