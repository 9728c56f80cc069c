"""
Persistence layer for the email outbox (email_outbox + notifications_log).
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, fetch_val
from app.infrastructure.observability.logging import get_logger
from app.models.domain.claim_domain import NotificationJob, NotificationStatus

logger = get_logger(__name__)


class NotificationRepository:
    """Raw SQL helpers for the notification outbox."""

    OUTBOX_SELECT_COLUMNS = """
        id, claim_id, trip_id, to_email, template, subject, payload, status,
        attempt_count, next_attempt_at, last_error, provider_message_id
    """

    @classmethod
    def _row_to_job(cls, row: dict | None) -> NotificationJob | None:
        if not row:
            return None

        return NotificationJob(
            id=str(row["id"]),
            claim_id=str(row["claim_id"]),
            trip_id=str(row["trip_id"]) if row.get("trip_id") else None,
            to_email=row["to_email"],
            template=row["template"],
            subject=row.get("subject"),
            payload=row.get("payload") or {},
            status=row["status"],
            attempt_count=row.get("attempt_count") or 0,
            next_attempt_at=row.get("next_attempt_at"),
            last_error=row.get("last_error"),
            provider_message_id=row.get("provider_message_id"),
        )

    @classmethod
    async def enqueue(
        cls,
        *,
        claim_id: str,
        trip_id: str | None,
        to_email: str,
        template: str,
        subject: str | None,
        payload: dict[str, Any],
    ) -> str | None:
        """Insert a queued outbox row; at most one per (claim, template)."""
        query = """
            INSERT INTO email_outbox (
                claim_id, trip_id, to_email, template, subject, payload,
                status, next_attempt_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, 'queued', NOW())
            ON CONFLICT (claim_id, template) DO NOTHING
            RETURNING id
        """
        row = await fetch_one(
            query, (claim_id, trip_id, to_email, template, subject, Jsonb(payload))
        )
        outbox_id = str(row["id"]) if row else None
        logger.info(
            "Notification enqueued" if outbox_id else "Notification already enqueued",
            claim_id=claim_id,
            template=template,
            outbox_id=outbox_id,
        )
        return outbox_id

    @classmethod
    async def find_sent_id(cls, claim_id: str, template: str) -> str | None:
        query = """
            SELECT id FROM email_outbox
            WHERE claim_id = %s AND template = %s AND status = 'sent'
        """
        outbox_id = await fetch_val(query, (claim_id, template))
        return str(outbox_id) if outbox_id else None

    # ------------------------------------------------------------------
    # Worker serialisation (session advisory lock on a held connection)
    # ------------------------------------------------------------------

    @classmethod
    async def try_lock(cls, connection: psycopg.AsyncConnection, key: int) -> bool:
        return bool(
            await fetch_val("SELECT pg_try_advisory_lock(%s) AS locked", (key,), connection=connection)
        )

    @classmethod
    async def unlock(cls, connection: psycopg.AsyncConnection, key: int) -> None:
        try:
            await fetch_val("SELECT pg_advisory_unlock(%s) AS unlocked", (key,), connection=connection)
        except DatabaseError as e:
            logger.error("Failed to release notifier advisory lock", key=key, error=str(e))

    # ------------------------------------------------------------------
    # Row claiming and outcomes
    # ------------------------------------------------------------------

    @classmethod
    async def fetch_due(cls, limit: int) -> list[NotificationJob]:
        query = f"""
            SELECT {cls.OUTBOX_SELECT_COLUMNS}
            FROM email_outbox
            WHERE status IN ('queued', 'failed')
              AND next_attempt_at IS NOT NULL
              AND next_attempt_at <= NOW()
              AND locked_at IS NULL
            ORDER BY next_attempt_at ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (limit,))
        return [cls._row_to_job(row) for row in rows]

    @classmethod
    async def claim_job(cls, job_id: str, worker_id: str) -> NotificationJob | None:
        """Move a due row to sending if nobody else took it; None if lost."""
        query = f"""
            UPDATE email_outbox
            SET status = 'sending',
                locked_at = NOW(),
                locked_by = %s,
                updated_at = NOW()
            WHERE id = %s
              AND status IN ('queued', 'failed')
            RETURNING {cls.OUTBOX_SELECT_COLUMNS}
        """
        row = await fetch_one(query, (worker_id, job_id))
        return cls._row_to_job(row)

    @classmethod
    async def mark_sent(cls, job_id: str, provider_message_id: str | None) -> None:
        query = """
            UPDATE email_outbox
            SET status = 'sent',
                provider_message_id = %s,
                last_error = NULL,
                next_attempt_at = NULL,
                locked_at = NULL,
                locked_by = NULL,
                updated_at = NOW()
            WHERE id = %s
              AND status = 'sending'
        """
        await execute_query(query, (provider_message_id, job_id))

    @classmethod
    async def mark_attempt_failed(
        cls,
        job_id: str,
        *,
        attempt_count: int,
        status: NotificationStatus,
        error: str,
        delay_seconds: float | None,
    ) -> None:
        query = """
            UPDATE email_outbox
            SET status = %s,
                attempt_count = %s,
                last_error = %s,
                next_attempt_at = CASE
                    WHEN %s::double precision IS NULL THEN NULL
                    ELSE NOW() + make_interval(secs => %s::double precision)
                END,
                locked_at = NULL,
                locked_by = NULL,
                updated_at = NOW()
            WHERE id = %s
              AND status = 'sending'
        """
        await execute_query(
            query,
            (status.value, attempt_count, error[:1000], delay_seconds, delay_seconds, job_id),
        )

    @classmethod
    async def mark_suppressed(cls, job_id: str, reason: str) -> None:
        query = """
            UPDATE email_outbox
            SET status = 'suppressed',
                last_error = %s,
                next_attempt_at = NULL,
                locked_at = NULL,
                locked_by = NULL,
                updated_at = NOW()
            WHERE id = %s
              AND status = 'sending'
        """
        await execute_query(query, (reason, job_id))

    @classmethod
    async def log_event(cls, outbox_id: str, event: str, detail: dict[str, Any]) -> None:
        """Audit trail row; failures are logged and never block delivery."""
        try:
            await execute_query(
                "INSERT INTO notifications_log (outbox_id, event, detail) VALUES (%s, %s, %s)",
                (outbox_id, event, Jsonb(detail)),
            )
        except DatabaseError as e:
            logger.error("notifications_log insert failed", outbox_id=outbox_id, error=str(e))

    @classmethod
    async def release_stale_sending(cls, older_than_seconds: float) -> int:
        """Rows stuck in sending after a crashed tick become retryable again."""
        query = """
            UPDATE email_outbox
            SET status = 'failed',
                last_error = 'stale_sending',
                next_attempt_at = NOW(),
                locked_at = NULL,
                locked_by = NULL,
                updated_at = NOW()
            WHERE status = 'sending'
              AND locked_at < NOW() - make_interval(secs => %s::double precision)
        """
        released = await execute_query(query, (older_than_seconds,))
        if released:
            logger.warning("Stale sending notifications released", count=released)
        return released
