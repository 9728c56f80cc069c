"""
Persistence layer for claims.

Status updates are guarded in SQL by the set of statuses allowed to move
to the target (see CLAIM_TRANSITIONS), so a late or duplicate writer
cannot move a claim backwards.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_one, fetch_val
from app.db.pool import get_db_transaction
from app.infrastructure.observability.logging import get_logger
from app.models.domain.claim_domain import (
    CLAIM_TRANSITIONS,
    Claim,
    ClaimStatus,
    CreateClaimResult,
)
from app.models.domain.trip_domain import Trip

logger = get_logger(__name__)


class ClaimRepositoryError(DatabaseError):
    """More specific exception for claim persistence failures."""


def _sources_for(target: ClaimStatus) -> list[str]:
    return [source.value for source, targets in CLAIM_TRANSITIONS.items() if target in targets]


class ClaimRepository:
    """Persistence helpers for the claims table."""

    CLAIM_SELECT_COLUMNS = """
        id, trip_id, user_email, status, fee_pct, provider, operator,
        booking_ref, origin, destination, depart_planned, arrive_planned,
        delay_minutes, meta, submitted_at, provider_ref, error, created_at
    """

    @classmethod
    def _row_to_claim(cls, row: dict | None) -> Claim | None:
        if not row:
            return None

        return Claim(
            id=str(row["id"]),
            trip_id=str(row["trip_id"]),
            user_email=row["user_email"],
            status=row["status"],
            fee_pct=row.get("fee_pct") or 0,
            provider=row.get("provider"),
            operator=row.get("operator"),
            booking_ref=row.get("booking_ref"),
            origin=row.get("origin"),
            destination=row.get("destination"),
            depart_planned=row.get("depart_planned"),
            arrive_planned=row.get("arrive_planned"),
            delay_minutes=row.get("delay_minutes"),
            meta=row.get("meta") or {},
            submitted_at=row.get("submitted_at"),
            provider_ref=row.get("provider_ref"),
            error=row.get("error"),
            created_at=row.get("created_at"),
        )

    @classmethod
    async def get_claim(cls, claim_id: str) -> Claim | None:
        query = f"SELECT {cls.CLAIM_SELECT_COLUMNS} FROM claims WHERE id = %s"
        row = await fetch_one(query, (claim_id,))
        return cls._row_to_claim(row)

    @classmethod
    async def find_active_claim(cls, trip_id: str, user_email: str, *, connection=None) -> Claim | None:
        """Latest claim for (trip, user) whose status is anything but failed."""
        query = f"""
            SELECT {cls.CLAIM_SELECT_COLUMNS}
            FROM claims
            WHERE trip_id = %s
              AND user_email = %s
              AND status <> 'failed'
            ORDER BY created_at DESC
            LIMIT 1
        """
        row = await fetch_one(query, (trip_id, user_email), connection=connection)
        return cls._row_to_claim(row)

    @classmethod
    async def has_newer_active_claim(cls, claim: Claim) -> bool:
        """True when another non-failed claim exists for the same (trip, user)."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM claims
                WHERE trip_id = %s
                  AND user_email = %s
                  AND status <> 'failed'
                  AND id <> %s
            ) AS superseded
        """
        return bool(await fetch_val(query, (claim.trip_id, claim.user_email, claim.id)))

    @classmethod
    async def create_claim_with_queue(
        cls,
        trip: Trip,
        provider: str,
        fee_pct: int,
        queue_payload: dict[str, Any],
    ) -> CreateClaimResult:
        """
        Insert a pending claim and its queued QueueItem in one transaction.

        The partial unique index on (trip_id, user_email) WHERE status <> 'failed'
        makes concurrent callers converge: the loser's insert does nothing and
        it returns the winner's claim with reused=True.
        """
        insert_claim = f"""
            INSERT INTO claims (
                trip_id, user_email, status, fee_pct, provider, operator,
                booking_ref, origin, destination, depart_planned, arrive_planned,
                delay_minutes, meta
            )
            VALUES (%s, %s, 'pending', %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (trip_id, user_email) WHERE status <> 'failed' DO NOTHING
            RETURNING {cls.CLAIM_SELECT_COLUMNS}
        """
        insert_queue = """
            INSERT INTO claim_queue (claim_id, provider, stage, payload, next_attempt_at)
            VALUES (%s, %s, 'queued', %s, NOW())
            RETURNING id, stage
        """
        meta = {
            "eligible": trip.eligible,
            "eligibility_reason": trip.eligibility_reason,
            "retailer": trip.retailer,
            "source": "api.claims.start",
        }

        async with await get_db_transaction() as conn:
            row = await fetch_one(
                insert_claim,
                (
                    trip.id,
                    trip.user_email,
                    fee_pct,
                    provider,
                    trip.operator,
                    trip.booking_ref,
                    trip.origin,
                    trip.destination,
                    trip.depart_planned,
                    trip.arrive_planned,
                    trip.delay_minutes,
                    Jsonb(meta),
                ),
                connection=conn,
            )

            if not row:
                existing = await cls.find_active_claim(trip.id, trip.user_email, connection=conn)
                if not existing:
                    raise ClaimRepositoryError(
                        "Claim insert conflicted but no active claim was found",
                        operation="create_claim_with_queue",
                    )
                logger.info(
                    "Concurrent claim creation converged on existing claim",
                    trip_id=trip.id,
                    claim_id=existing.id,
                )
                return CreateClaimResult(
                    claim_id=existing.id,
                    status=existing.status,
                    reused=True,
                    provider=existing.provider,
                )

            claim = cls._row_to_claim(row)
            payload = {**queue_payload, "claim_id": claim.id}
            queue_row = await fetch_one(
                insert_queue, (claim.id, provider, Jsonb(payload)), connection=conn
            )

        logger.info(
            "Claim created",
            claim_id=claim.id,
            trip_id=trip.id,
            provider=provider,
            queue_id=str(queue_row["id"]) if queue_row else None,
        )
        return CreateClaimResult(
            claim_id=claim.id,
            status=claim.status,
            reused=False,
            provider=provider,
            queue_id=str(queue_row["id"]) if queue_row else None,
            queue_status=queue_row["stage"] if queue_row else None,
        )

    # ------------------------------------------------------------------
    # Guarded status transitions
    # ------------------------------------------------------------------

    @classmethod
    async def _transition(
        cls, claim_id: str, target: ClaimStatus, assignments: str = "", params: tuple = ()
    ) -> bool:
        query = f"""
            UPDATE claims
            SET status = %s,
                {assignments}
                updated_at = NOW()
            WHERE id = %s
              AND status = ANY(%s)
        """
        affected = await execute_query(
            query, (target.value, *params, claim_id, _sources_for(target))
        )
        if not affected:
            logger.warning("Claim transition rejected", claim_id=claim_id, target=target.value)
        return affected > 0

    @classmethod
    async def mark_queued(cls, claim_id: str) -> bool:
        return await cls._transition(claim_id, ClaimStatus.QUEUED)

    @classmethod
    async def mark_processing(cls, claim_id: str) -> bool:
        return await cls._transition(claim_id, ClaimStatus.PROCESSING, "error = NULL,")

    @classmethod
    async def mark_submitted(
        cls, claim_id: str, provider_ref: str | None, submitted_at: datetime
    ) -> bool:
        return await cls._transition(
            claim_id,
            ClaimStatus.SUBMITTED,
            "provider_ref = %s, submitted_at = %s, error = NULL,",
            (provider_ref, submitted_at),
        )

    @classmethod
    async def mark_ready(cls, claim_id: str, meta_patch: dict[str, Any]) -> bool:
        return await cls._transition(
            claim_id,
            ClaimStatus.READY,
            "meta = COALESCE(meta, '{}'::jsonb) || %s, error = NULL,",
            (Jsonb(meta_patch),),
        )

    @classmethod
    async def mark_failed(cls, claim_id: str, error: str) -> bool:
        return await cls._transition(
            claim_id, ClaimStatus.FAILED, "error = %s,", ((error or "unknown_error")[:1000],)
        )

    @classmethod
    async def mark_emailed(cls, claim_id: str, outbox_id: str) -> bool:
        return await cls._transition(
            claim_id,
            ClaimStatus.EMAILED,
            "emailed_at = NOW(), email_outbox_id = %s,",
            (outbox_id,),
        )

