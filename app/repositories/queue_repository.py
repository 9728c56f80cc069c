"""
Persistence layer for the claim submission queue (claim_queue).

The pop statements are the only synchronisation point between dispatcher
processes: each is a single UPDATE over a FOR UPDATE SKIP LOCKED subselect,
so two workers can never receive the same row.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.infrastructure.observability.logging import get_logger
from app.models.domain.claim_domain import ACTIVE_QUEUE_STAGES, QueueItem, QueueStage

logger = get_logger(__name__)


class ClaimQueueRepository:
    """Raw SQL helpers for claim_queue."""

    QUEUE_SELECT_COLUMNS = """
        id, claim_id, provider, stage, attempts, next_attempt_at,
        last_error, response, created_at
    """

    @classmethod
    def _row_to_item(cls, row: dict | None) -> QueueItem | None:
        if not row:
            return None

        return QueueItem(
            id=str(row["id"]),
            claim_id=str(row["claim_id"]),
            provider=row.get("provider"),
            stage=row["stage"],
            attempts=row.get("attempts") or 0,
            next_attempt_at=row.get("next_attempt_at"),
            last_error=row.get("last_error"),
            response=row.get("response"),
            created_at=row.get("created_at"),
        )

    @classmethod
    async def pop_next(cls, worker_id: str) -> QueueItem | None:
        """
        Atomically claim the oldest due queued item.

        Moves it to processing, bumps attempts and clears last_error.
        """
        query = f"""
            UPDATE claim_queue q
            SET stage = 'processing',
                attempts = q.attempts + 1,
                last_error = NULL,
                locked_at = NOW(),
                locked_by = %s,
                updated_at = NOW()
            WHERE q.id = (
                SELECT id
                FROM claim_queue
                WHERE stage = 'queued'
                  AND (next_attempt_at IS NULL OR next_attempt_at <= NOW())
                ORDER BY next_attempt_at ASC NULLS FIRST, created_at ASC
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            )
            RETURNING {cls.QUEUE_SELECT_COLUMNS}
        """
        row = await fetch_one(query, (worker_id,))
        return cls._row_to_item(row)

    @classmethod
    async def pop_due_checks(
        cls, worker_id: str, limit: int, lease_seconds: float
    ) -> list[QueueItem]:
        """
        Atomically lease due check-stage items.

        The lease pushes next_attempt_at forward so a crashed checker's rows
        come back on their own.
        """
        query = f"""
            WITH due AS (
                SELECT id
                FROM claim_queue
                WHERE stage = 'check'
                  AND next_attempt_at IS NOT NULL
                  AND next_attempt_at <= NOW()
                ORDER BY next_attempt_at ASC
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            UPDATE claim_queue q
            SET locked_at = NOW(),
                locked_by = %s,
                next_attempt_at = NOW() + make_interval(secs => %s),
                updated_at = NOW()
            FROM due
            WHERE q.id = due.id
            RETURNING q.id, q.claim_id, q.provider, q.stage, q.attempts, q.next_attempt_at,
                      q.last_error, q.response, q.created_at
        """
        rows = await fetch_all(query, (limit, worker_id, lease_seconds))
        return [cls._row_to_item(row) for row in rows]

    @classmethod
    async def enqueue_if_idle(
        cls, claim_id: str, provider: str, payload: dict[str, Any]
    ) -> tuple[QueueItem | None, bool]:
        """
        Insert a queued item unless the claim already has one queued/processing.

        Returns (item, created). The partial unique index on active stages
        closes the race between the existence check and the insert.
        """
        existing = await fetch_one(
            f"""
            SELECT {cls.QUEUE_SELECT_COLUMNS}
            FROM claim_queue
            WHERE claim_id = %s AND stage = ANY(%s)
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (claim_id, list(ACTIVE_QUEUE_STAGES)),
        )
        if existing:
            return cls._row_to_item(existing), False

        row = await fetch_one(
            f"""
            INSERT INTO claim_queue (claim_id, provider, stage, payload, next_attempt_at)
            VALUES (%s, %s, 'queued', %s, NOW())
            ON CONFLICT (claim_id) WHERE stage IN ('queued', 'processing') DO NOTHING
            RETURNING {cls.QUEUE_SELECT_COLUMNS}
            """,
            (claim_id, provider, Jsonb(payload)),
        )
        return cls._row_to_item(row), row is not None

    @classmethod
    async def reschedule(
        cls,
        item_id: str,
        *,
        stage: QueueStage,
        delay_seconds: float | None,
        last_error: str | None = None,
        response: dict[str, Any] | None = None,
    ) -> None:
        """
        Move an item to a stage and set its next attempt.

        delay_seconds=None clears next_attempt_at (terminal stages).
        """
        query = """
            UPDATE claim_queue
            SET stage = %s,
                next_attempt_at = CASE
                    WHEN %s::double precision IS NULL THEN NULL
                    ELSE NOW() + make_interval(secs => %s::double precision)
                END,
                last_error = %s,
                response = COALESCE(%s, response),
                locked_at = NULL,
                locked_by = NULL,
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(
            query,
            (
                stage.value,
                delay_seconds,
                delay_seconds,
                last_error[:1000] if last_error else None,
                Jsonb(response) if response is not None else None,
                item_id,
            ),
        )
        logger.debug(
            "Queue item rescheduled",
            queue_id=item_id,
            stage=stage.value,
            delay_seconds=delay_seconds,
            last_error=last_error,
        )

    @classmethod
    async def earliest_due_at(cls) -> datetime | None:
        """next_attempt_at of the earliest queued item, for scheduler wake-ups."""
        query = """
            SELECT MIN(next_attempt_at) AS due_at
            FROM claim_queue
            WHERE stage = 'queued'
        """
        return await fetch_val(query)

    @classmethod
    async def requeue_stale_processing(cls, older_than_seconds: float) -> int:
        """
        Return items abandoned in processing by a crashed dispatcher to queued.

        Attempts are kept, so a submission that keeps crashing its worker
        still reaches the dead-letter ceiling.
        """
        query = """
            UPDATE claim_queue
            SET stage = 'queued',
                next_attempt_at = NOW(),
                last_error = 'stale_processing',
                locked_at = NULL,
                locked_by = NULL,
                updated_at = NOW()
            WHERE stage = 'processing'
              AND locked_at IS NOT NULL
              AND locked_at < NOW() - make_interval(secs => %s::double precision)
        """
        released = await execute_query(query, (older_than_seconds,))
        if released:
            logger.warning("Stale processing items requeued", count=released)
        return released
