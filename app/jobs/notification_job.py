"""
Notification outbox worker.

A Postgres session advisory lock, held on one pooled connection for the
whole tick, keeps a single notifier active; rows are then claimed one by
one with a conditional update to sending.
"""

from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger
from app.jobs.base import TickJob, run_forever
from app.repositories.notification_repository import NotificationRepository
from app.services.email.resend_client import email_client
from app.services.notification_service import deliver

logger = get_logger(__name__)

STALE_SENDING_SECONDS = 600


class NotificationOutboxJob(TickJob):
    name = "notifications"

    @property
    def interval_seconds(self) -> float:
        return settings.NOTIFY_INTERVAL_SECONDS

    async def _tick(self) -> dict[str, Any]:
        if not email_client.is_configured():
            return {"processed": 0, "result": "email_not_configured"}

        async with await get_db_connection() as lock_conn:
            if not await NotificationRepository.try_lock(lock_conn, settings.NOTIFY_LOCK_KEY):
                return {"processed": 0, "result": "locked_elsewhere"}

            try:
                return await self._drain()
            finally:
                await NotificationRepository.unlock(lock_conn, settings.NOTIFY_LOCK_KEY)

    async def _drain(self) -> dict[str, Any]:
        released = await NotificationRepository.release_stale_sending(STALE_SENDING_SECONDS)
        due = await NotificationRepository.fetch_due(settings.NOTIFY_BATCH_SIZE)

        outcomes: dict[str, int] = {}
        processed = 0
        for candidate in due:
            job = await NotificationRepository.claim_job(candidate.id, self.worker_id)
            if job is None:
                outcomes["taken"] = outcomes.get("taken", 0) + 1
                continue

            processed += 1
            try:
                outcome = await deliver(job)
            except DatabaseError as e:
                logger.error("Notification delivery hit a database error", outbox_id=job.id, error=str(e))
                outcome = "db_error"
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        return {"processed": processed, "due": len(due), "stale_released": released, "outcomes": outcomes}


notification_job = NotificationOutboxJob()


async def run_notification_job() -> dict:
    return await notification_job.run_once()


async def start_notification_scheduler():
    await run_forever(notification_job)
