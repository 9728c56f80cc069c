"""
Post-submission check stage.

Leases due check items, finalises the ones whose claim went through,
dead-letters the ones that can never go through and parks the rest.
"""

from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.jobs.base import TickJob, run_forever
from app.models.domain.claim_domain import ClaimStatus, QueueItem, QueueStage
from app.repositories.claim_repository import ClaimRepository
from app.repositories.queue_repository import ClaimQueueRepository

logger = get_logger(__name__)


class ClaimCheckJob(TickJob):
    name = "claim_check"

    @property
    def interval_seconds(self) -> float:
        return settings.CLAIM_CHECK_INTERVAL_SECONDS

    @property
    def check_delay_seconds(self) -> float:
        return settings.CLAIM_CHECK_DELAY_HOURS * 3600

    async def _tick(self) -> dict[str, Any]:
        requeued = await ClaimQueueRepository.requeue_stale_processing(
            settings.SUBMISSION_TIMEOUT_SECONDS * 2
        )
        items = await ClaimQueueRepository.pop_due_checks(
            self.worker_id, settings.CLAIM_CHECK_BATCH_SIZE, self.check_delay_seconds
        )

        outcomes: dict[str, int] = {}
        for item in items:
            try:
                outcome = await self.check_item(item)
            except DatabaseError as e:
                # the lease already pushed next_attempt_at, so the item comes back later
                logger.error("Check failed", queue_id=item.id, error=str(e))
                outcome = "db_error"
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        return {"checked": len(items), "stale_requeued": requeued, "outcomes": outcomes}

    async def check_item(self, item: QueueItem) -> str:
        claim = await ClaimRepository.get_claim(item.claim_id)

        if claim is None:
            await ClaimQueueRepository.reschedule(
                item.id, stage=QueueStage.FAILED, delay_seconds=None, last_error="claim_missing"
            )
            logger.error("Check dead-lettered item with missing claim", queue_id=item.id)
            return "dead_lettered"

        if claim.status in (ClaimStatus.SUBMITTED.value, ClaimStatus.EMAILED.value):
            await ClaimQueueRepository.reschedule(
                item.id, stage=QueueStage.SUBMITTED, delay_seconds=None
            )
            return "finalised"

        if claim.status == ClaimStatus.FAILED.value:
            await ClaimQueueRepository.reschedule(
                item.id,
                stage=QueueStage.FAILED,
                delay_seconds=None,
                last_error=item.last_error or claim.error or "claim_failed",
            )
            return "dead_lettered"

        if claim.status == ClaimStatus.READY.value and settings.SUBMIT_LIVE:
            await ClaimQueueRepository.reschedule(item.id, stage=QueueStage.QUEUED, delay_seconds=0)
            logger.info("Ready claim requeued for live submission", claim_id=claim.id, queue_id=item.id)
            return "requeued_live"

        await ClaimQueueRepository.reschedule(
            item.id,
            stage=QueueStage.CHECK,
            delay_seconds=self.check_delay_seconds,
            last_error=item.last_error,
        )
        return "parked"


claim_check_job = ClaimCheckJob()


async def run_claim_check_job() -> dict:
    return await claim_check_job.run_once()


async def start_claim_check_scheduler():
    await run_forever(claim_check_job)
