"""
Claim queue dispatcher.

Each tick atomically pops the oldest due queued item, runs the operator's
submission adapter and records the outcome on the claim and the queue row.
A bad item never stops the loop: every failure is written onto its row.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.jobs.base import TickJob, run_forever
from app.models.domain.claim_domain import Claim, ClaimStatus, QueueItem, QueueStage
from app.repositories.claim_repository import ClaimRepository
from app.repositories.notification_repository import NotificationRepository
from app.repositories.queue_repository import ClaimQueueRepository
from app.services.email.templates import CLAIM_READY_TEMPLATE
from app.services.notification_service import enqueue_claim_notification
from app.services.providers import (
    ProviderError,
    ProviderId,
    SubmissionPayload,
    SubmissionResult,
    UnsupportedProviderError,
    get_adapter,
    provider_for_operator,
)

logger = get_logger(__name__)

FINISHED_CLAIM_STATUSES = (ClaimStatus.SUBMITTED.value, ClaimStatus.EMAILED.value)


def retry_backoff_minutes(attempts: int) -> int:
    """min(60, max(2, attempts + 1)) minutes after the attempts-th failure."""
    return min(60, max(2, attempts + 1))


def _resolve_provider(claim: Claim, item: QueueItem) -> ProviderId | None:
    provider = provider_for_operator(claim.operator)
    if provider is not None:
        return provider
    try:
        return ProviderId(item.provider) if item.provider else None
    except ValueError:
        return None


class ClaimQueueJob(TickJob):
    """Pops one queue item per tick and drives it through its provider adapter."""

    name = "claim_queue"

    @property
    def interval_seconds(self) -> float:
        return settings.CLAIM_QUEUE_INTERVAL_SECONDS

    async def _tick(self) -> dict[str, Any]:
        if not settings.AUTOMATION_ENABLED:
            return {"processed": 0, "result": "automation_disabled"}

        item = await ClaimQueueRepository.pop_next(self.worker_id)
        if item is None:
            return {"processed": 0, "result": "idle", "next_due_at": await self._next_due_at()}

        try:
            result = await self.process_item(item)
        except DatabaseError as e:
            result = "db_error"
            logger.error("Queue item processing hit a database error", queue_id=item.id, error=str(e))
            await self._retry_or_dead_letter(item, f"db_error: {e}")

        return {
            "processed": 1,
            "queue_id": item.id,
            "claim_id": item.claim_id,
            "attempts": item.attempts,
            "result": result,
            "next_due_at": await self._next_due_at(),
        }

    async def _next_due_at(self) -> str | None:
        try:
            due = await ClaimQueueRepository.earliest_due_at()
        except DatabaseError:
            return None
        return due.isoformat() if due else None

    async def process_item(self, item: QueueItem) -> str:
        """Handle one popped (processing) item. Returns the outcome label."""
        claim = await ClaimRepository.get_claim(item.claim_id)

        if claim is None:
            logger.error("Queue item references missing claim", queue_id=item.id, claim_id=item.claim_id)
            await ClaimQueueRepository.reschedule(
                item.id,
                stage=QueueStage.CHECK,
                delay_seconds=settings.CLAIM_MISSING_DELAY_HOURS * 3600,
                last_error="claim_missing",
            )
            return "claim_missing"

        if claim.status in FINISHED_CLAIM_STATUSES:
            await ClaimQueueRepository.reschedule(
                item.id, stage=QueueStage.CHECK, delay_seconds=settings.CLAIM_CHECK_DELAY_HOURS * 3600
            )
            return "already_submitted"

        if claim.status == ClaimStatus.READY.value and not settings.SUBMIT_LIVE:
            # dry-run already did its work; only live mode moves a ready claim on
            await ClaimQueueRepository.reschedule(
                item.id,
                stage=QueueStage.CHECK,
                delay_seconds=settings.CLAIM_DRY_RUN_DELAY_HOURS * 3600,
                last_error="awaiting_live_submission",
            )
            return "awaiting_live"

        if claim.status == ClaimStatus.FAILED.value and await ClaimRepository.has_newer_active_claim(claim):
            logger.info("Failed claim superseded, not retrying", claim_id=claim.id, queue_id=item.id)
            await ClaimQueueRepository.reschedule(
                item.id,
                stage=QueueStage.CHECK,
                delay_seconds=settings.CLAIM_MISSING_DELAY_HOURS * 3600,
                last_error="superseded",
            )
            return "superseded"

        provider = _resolve_provider(claim, item)
        try:
            adapter = get_adapter(provider) if provider else None
        except UnsupportedProviderError:
            adapter = None

        if adapter is None:
            logger.warning("No provider for claim operator", claim_id=claim.id, operator=claim.operator)
            await ClaimRepository.mark_failed(claim.id, "no_provider_for_operator")
            await ClaimQueueRepository.reschedule(
                item.id,
                stage=QueueStage.CHECK,
                delay_seconds=settings.CLAIM_MISSING_DELAY_HOURS * 3600,
                last_error="no_provider_for_operator",
            )
            return "no_provider"

        # a claim left in processing by a crashed worker is taken over as is
        if claim.status != ClaimStatus.PROCESSING.value:
            if not await ClaimRepository.mark_processing(claim.id):
                await self._retry_or_dead_letter(item, f"claim_not_processable: {claim.status}")
                return "retry_scheduled"

        live = settings.SUBMIT_LIVE
        result = await self._submit(adapter, SubmissionPayload.from_claim(claim, provider.value), live)

        if result.ok and not result.live:
            return await self._record_dry_run(claim, item, provider, result)

        if result.ok and result.confirmed:
            return await self._record_submitted(claim, item, provider, result)

        error = result.error or ("unconfirmed_submission" if result.ok else "unknown_error")
        await ClaimRepository.mark_failed(claim.id, error)
        return await self._retry_or_dead_letter(item, error, result)

    async def _submit(self, adapter, payload: SubmissionPayload, live: bool) -> SubmissionResult:
        try:
            return await asyncio.wait_for(
                adapter.submit(payload, live=live), timeout=settings.SUBMISSION_TIMEOUT_SECONDS
            )
        except TimeoutError:
            error = "submission_timeout"
        except ProviderError as e:
            error = str(e)
        except Exception as e:
            logger.error(
                "Adapter raised", claim_id=payload.claim_id, error=str(e), error_type=type(e).__name__
            )
            error = f"{type(e).__name__}: {e}"
        return SubmissionResult(ok=False, provider=payload.provider, live=live, error=error[:1000])

    async def _record_submitted(
        self, claim: Claim, item: QueueItem, provider: ProviderId, result: SubmissionResult
    ) -> str:
        submitted_at = result.submitted_at or datetime.now(UTC)
        if not await ClaimRepository.mark_submitted(claim.id, result.provider_ref, submitted_at):
            logger.warning("Claim changed while submitting", claim_id=claim.id)

        await ClaimQueueRepository.reschedule(
            item.id,
            stage=QueueStage.CHECK,
            delay_seconds=settings.CLAIM_CHECK_DELAY_HOURS * 3600,
            response=result.to_response(),
        )

        claim.status = ClaimStatus.SUBMITTED.value
        claim.provider_ref = result.provider_ref
        if await enqueue_claim_notification(claim, provider.value, live=True) is None:
            await self._mark_emailed_if_sent(claim)

        logger.info(
            "Claim submitted", claim_id=claim.id, provider=provider.value, provider_ref=result.provider_ref
        )
        return "submitted"

    async def _mark_emailed_if_sent(self, claim: Claim) -> None:
        """
        The outbox row already existed: if it went out while the claim was
        processing, the notifier's emailed transition was rejected, so apply it here.
        """
        try:
            outbox_id = await NotificationRepository.find_sent_id(claim.id, CLAIM_READY_TEMPLATE)
            if outbox_id:
                await ClaimRepository.mark_emailed(claim.id, outbox_id)
        except DatabaseError as e:
            logger.error("Failed to sync emailed status", claim_id=claim.id, error=str(e))

    async def _record_dry_run(
        self, claim: Claim, item: QueueItem, provider: ProviderId, result: SubmissionResult
    ) -> str:
        await ClaimRepository.mark_ready(
            claim.id,
            {"dry_run": True, "dry_run_at": datetime.now(UTC).isoformat(), "provider": provider.value},
        )
        await ClaimQueueRepository.reschedule(
            item.id,
            stage=QueueStage.QUEUED,
            delay_seconds=settings.CLAIM_DRY_RUN_DELAY_HOURS * 3600,
            response=result.to_response(),
        )

        claim.status = ClaimStatus.READY.value
        await enqueue_claim_notification(claim, provider.value, live=False)

        logger.info("Claim ready (dry run)", claim_id=claim.id, provider=provider.value)
        return "ready"

    async def _retry_or_dead_letter(
        self, item: QueueItem, error: str, result: SubmissionResult | None = None
    ) -> str:
        response = result.to_response() if result else None

        if item.attempts >= settings.CLAIM_QUEUE_MAX_ATTEMPTS:
            await ClaimQueueRepository.reschedule(
                item.id, stage=QueueStage.FAILED, delay_seconds=None, last_error=error, response=response
            )
            logger.error("Queue item dead-lettered", queue_id=item.id, attempts=item.attempts, error=error)
            return "dead_lettered"

        minutes = retry_backoff_minutes(item.attempts)
        await ClaimQueueRepository.reschedule(
            item.id,
            stage=QueueStage.QUEUED,
            delay_seconds=minutes * 60,
            last_error=error,
            response=response,
        )
        logger.warning(
            "Submission failed, retry scheduled",
            queue_id=item.id,
            attempts=item.attempts,
            backoff_minutes=minutes,
            error=error,
        )
        return "retry_scheduled"


claim_queue_job = ClaimQueueJob()


async def run_claim_queue_job() -> dict:
    """Run a single dispatcher tick."""
    return await claim_queue_job.run_once()


async def start_claim_queue_scheduler():
    await run_forever(claim_queue_job)
