"""
Notification outbox: enqueueing claim emails and delivering one outbox row.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.claim_domain import Claim, NotificationJob, NotificationStatus
from app.repositories.claim_repository import ClaimRepository
from app.repositories.notification_repository import NotificationRepository
from app.services.email.resend_client import EmailSendError, email_client
from app.services.email.templates import (
    CLAIM_READY_TEMPLATE,
    DEFAULT_SUBJECT,
    build_claim_ready_payload,
    render_claim_ready,
)
from app.services.providers import claim_url_for, provider_for_operator

logger = get_logger(__name__)


def notify_backoff_seconds(attempt: int) -> int:
    """1, 2, 4 ... 60 minutes: min(60, 2^min(6, attempt)) minutes."""
    return min(60, 2 ** min(6, max(0, attempt))) * 60


def idempotency_key_for(job: NotificationJob) -> str:
    """One key per outbox row, so every retry of the row is the same send."""
    return f"email-outbox/{job.id}"


def resolve_claim_url(payload: dict[str, Any], provider: str | None = None) -> str | None:
    if payload.get("claim_url"):
        return payload["claim_url"]
    return claim_url_for(provider or provider_for_operator(payload.get("operator")))


async def enqueue_claim_notification(claim: Claim, provider: str | None, live: bool) -> str | None:
    """
    Queue the claim_ready email for a claim that reached submitted or ready.

    Never raises: an outbox failure must not undo a submission.
    """
    payload = build_claim_ready_payload(claim, claim_url_for(provider), live)
    try:
        return await NotificationRepository.enqueue(
            claim_id=claim.id,
            trip_id=claim.trip_id,
            to_email=claim.user_email,
            template=CLAIM_READY_TEMPLATE,
            subject=DEFAULT_SUBJECT,
            payload=payload,
        )
    except DatabaseError as e:
        logger.error("Failed to enqueue claim notification", claim_id=claim.id, error=str(e))
        return None


async def deliver(job: NotificationJob) -> str:
    """
    Send one claimed (status=sending) outbox row and record the outcome.

    Returns one of: sent, sent_unrecorded, suppressed, retry_scheduled, dead.
    """
    await NotificationRepository.log_event(
        job.id, "sending", {"to": job.to_email, "template": job.template, "attempt": job.attempt_count + 1}
    )

    claim_url = resolve_claim_url(job.payload)
    if not claim_url:
        await NotificationRepository.mark_suppressed(job.id, "no_claim_url")
        await NotificationRepository.log_event(job.id, "suppressed", {"reason": "no_claim_url"})
        logger.warning("Notification suppressed", outbox_id=job.id, claim_id=job.claim_id)
        return "suppressed"

    html, text = render_claim_ready({**job.payload, "claim_url": claim_url}, settings.APP_PUBLIC_URL)

    try:
        sent = await email_client.send(
            job.to_email,
            job.subject or DEFAULT_SUBJECT,
            html,
            text,
            idempotency_key=idempotency_key_for(job),
        )
    except EmailSendError as e:
        return await _record_failure(job, str(e))

    try:
        await NotificationRepository.mark_sent(job.id, sent["id"])
    except DatabaseError as e:
        # row stays in sending; once released, the retry reuses the same key and is not re-sent
        logger.error(
            "Notification sent but not recorded",
            outbox_id=job.id,
            claim_id=job.claim_id,
            message_id=sent["id"],
            error=str(e),
        )
        return "sent_unrecorded"

    await ClaimRepository.mark_emailed(job.claim_id, job.id)
    await NotificationRepository.log_event(job.id, "sent", {"provider_message_id": sent["id"]})
    logger.info("Notification sent", outbox_id=job.id, claim_id=job.claim_id, message_id=sent["id"])
    return "sent"


async def _record_failure(job: NotificationJob, error: str) -> str:
    attempt = job.attempt_count + 1
    dead = attempt >= settings.NOTIFY_MAX_ATTEMPTS
    delay = None if dead else notify_backoff_seconds(attempt)

    await NotificationRepository.mark_attempt_failed(
        job.id,
        attempt_count=attempt,
        status=NotificationStatus.DEAD if dead else NotificationStatus.FAILED,
        error=error,
        delay_seconds=delay,
    )

    next_attempt_at = None
    if delay is not None:
        next_attempt_at = (datetime.now(UTC) + timedelta(seconds=delay)).isoformat()

    event = "dead" if dead else "retry_scheduled"
    await NotificationRepository.log_event(
        job.id, event, {"attempt": attempt, "next_attempt_at": next_attempt_at, "error": error[:1000]}
    )
    logger.warning(
        "Notification send failed", outbox_id=job.id, attempt=attempt, dead=dead, error=error
    )
    return event
