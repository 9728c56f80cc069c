"""
Domain records for claims, their submission queue and the email outbox.

Status and stage names are the values stored in the database.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ClaimStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    SUBMITTED = "submitted"
    READY = "ready"
    EMAILED = "emailed"
    FAILED = "failed"


class QueueStage(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    CHECK = "check"
    SUBMITTED = "submitted"
    FAILED = "failed"


class NotificationStatus(str, Enum):
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    DEAD = "dead"
    SUPPRESSED = "suppressed"


# Legal claim transitions. failed -> processing is only taken by the
# dispatcher when it retries the queue item that failed the claim.
CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset(
        {ClaimStatus.QUEUED, ClaimStatus.PROCESSING, ClaimStatus.FAILED}
    ),
    ClaimStatus.QUEUED: frozenset({ClaimStatus.PROCESSING, ClaimStatus.FAILED}),
    ClaimStatus.PROCESSING: frozenset(
        {ClaimStatus.SUBMITTED, ClaimStatus.READY, ClaimStatus.FAILED}
    ),
    ClaimStatus.READY: frozenset({ClaimStatus.PROCESSING, ClaimStatus.EMAILED}),
    ClaimStatus.SUBMITTED: frozenset({ClaimStatus.EMAILED}),
    ClaimStatus.EMAILED: frozenset(),
    ClaimStatus.FAILED: frozenset({ClaimStatus.PROCESSING}),
}

ACTIVE_QUEUE_STAGES = (QueueStage.QUEUED.value, QueueStage.PROCESSING.value)


def can_transition(current: str, target: str) -> bool:
    """Return True if a claim may move from current to target status."""
    try:
        return ClaimStatus(target) in CLAIM_TRANSITIONS[ClaimStatus(current)]
    except ValueError:
        return False


@dataclass(slots=True)
class Claim:
    """Represents a claims row with its denormalized journey snapshot."""

    id: str
    trip_id: str
    user_email: str
    status: str
    fee_pct: int
    provider: str | None
    operator: str | None
    booking_ref: str | None
    origin: str | None
    destination: str | None
    depart_planned: datetime | None
    arrive_planned: datetime | None
    delay_minutes: int | None
    meta: dict[str, Any] = field(default_factory=dict)
    submitted_at: datetime | None = None
    provider_ref: str | None = None
    error: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class QueueItem:
    """Represents a claim_queue row."""

    id: str
    claim_id: str
    provider: str | None
    stage: str
    attempts: int
    next_attempt_at: datetime | None
    last_error: str | None = None
    response: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class NotificationJob:
    """Represents an email_outbox row."""

    id: str
    claim_id: str
    trip_id: str | None
    to_email: str
    template: str
    subject: str | None
    payload: dict[str, Any]
    status: str
    attempt_count: int
    next_attempt_at: datetime | None
    last_error: str | None = None
    provider_message_id: str | None = None


@dataclass(slots=True)
class CreateClaimResult:
    """Result of CreateClaim: either a new claim or the reused active one."""

    claim_id: str
    status: str
    reused: bool
    provider: str | None = None
    queue_id: str | None = None
    queue_status: str | None = None
