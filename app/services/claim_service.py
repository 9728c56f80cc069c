"""
Claim lifecycle service.

Creates claims from eligible trips exactly once per (trip, user) and queues
existing pending claims for submission. Status changes after creation are
owned by the dispatcher and the notifier.
"""

from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.claim_domain import ClaimStatus, CreateClaimResult
from app.models.domain.trip_domain import Trip
from app.repositories.claim_repository import ClaimRepository
from app.repositories.queue_repository import ClaimQueueRepository
from app.repositories.trip_repository import TripRepository
from app.services.providers import ProviderId, provider_for_operator

logger = get_logger(__name__)


class ClaimServiceError(Exception):
    """Base exception for claim lifecycle operations."""

    status_code = 400

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = False):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class TripNotFoundError(ClaimServiceError):
    status_code = 404


class ClaimNotFoundError(ClaimServiceError):
    status_code = 404


class UnsupportedOperatorError(ClaimServiceError):
    status_code = 400

    def __init__(self, operator: str | None, operation: str = "resolve_provider"):
        super().__init__("Operator not supported for auto-claim yet", operation)
        self.operator = operator


class InvalidStateError(ClaimServiceError):
    status_code = 409

    def __init__(self, status: str, operation: str = "queue_existing"):
        super().__init__(f"Claim is {status}", operation)
        self.status = status


def resolve_provider(operator: str | None) -> ProviderId:
    """Provider for an operator name, or UnsupportedOperatorError."""
    provider = provider_for_operator(operator)
    if provider is None:
        raise UnsupportedOperatorError(operator)
    return provider


def build_queue_payload(trip: Trip, provider: ProviderId, fee_pct: int) -> dict[str, Any]:
    """Canonical queue payload; the claim_id is added once the claim exists."""

    def iso(value):
        return value.isoformat() if value else None

    return {
        "trip_id": trip.id,
        "provider": provider.value,
        "passenger": {"email": trip.user_email},
        "journey": {
            "origin": trip.origin,
            "destination": trip.destination,
            "planned_departure": iso(trip.depart_planned),
            "planned_arrival": iso(trip.arrive_planned),
            "delay_minutes": trip.delay_minutes,
        },
        "ticket": {
            "booking_ref": trip.booking_ref,
            "retailer": trip.retailer,
            "operator": trip.operator,
        },
        "fee_pct": fee_pct,
        "meta": {"source": "api.claims.start"},
    }


async def create_claim(trip_id: str, user_email: str) -> CreateClaimResult:
    """
    CreateClaim: one non-failed claim per (trip, user).

    Returns the existing active claim unchanged (reused=True) when there is
    one; otherwise inserts a pending claim plus a queued queue item.

    Raises:
        TripNotFoundError: trip missing or owned by someone else
        UnsupportedOperatorError: operator has no provider mapping
    """
    trip = await TripRepository.get_trip_for_user(trip_id, user_email)
    if not trip:
        raise TripNotFoundError("Trip not found", operation="create_claim")

    provider = resolve_provider(trip.operator)

    existing = await ClaimRepository.find_active_claim(trip.id, trip.user_email)
    if existing:
        logger.info("Reusing active claim", trip_id=trip.id, claim_id=existing.id, status=existing.status)
        return CreateClaimResult(
            claim_id=existing.id,
            status=existing.status,
            reused=True,
            provider=existing.provider,
        )

    fee_pct = settings.fee_pct()
    return await ClaimRepository.create_claim_with_queue(
        trip, provider.value, fee_pct, build_queue_payload(trip, provider, fee_pct)
    )


async def queue_existing(claim_id: str, user_email: str | None = None) -> dict[str, Any]:
    """
    QueueExisting: queue a pending claim for submission.

    Only inserts a queue item when none is queued or processing for the
    claim, so repeated calls never double-queue.

    Raises:
        ClaimNotFoundError, InvalidStateError, TripNotFoundError,
        UnsupportedOperatorError
    """
    claim = await ClaimRepository.get_claim(claim_id)
    if claim and user_email and claim.user_email.lower() != user_email.lower():
        claim = None
    if not claim:
        raise ClaimNotFoundError("Claim not found", operation="queue_existing")
    if claim.status != ClaimStatus.PENDING.value:
        raise InvalidStateError(claim.status)

    trip = await TripRepository.get_trip(claim.trip_id)
    if not trip:
        raise TripNotFoundError("Trip not found", operation="queue_existing")

    provider = resolve_provider(trip.operator or claim.operator)
    payload = {**build_queue_payload(trip, provider, claim.fee_pct), "claim_id": claim.id}
    payload["meta"] = {"source": "api.claims.queue"}

    item, created = await ClaimQueueRepository.enqueue_if_idle(claim.id, provider.value, payload)
    await ClaimRepository.mark_queued(claim.id)

    logger.info(
        "Claim queued" if created else "Claim already queued",
        claim_id=claim.id,
        provider=provider.value,
        queue_id=item.id if item else None,
    )
    return {
        "claim_id": claim.id,
        "provider": provider.value,
        "queue_id": item.id if item else None,
        "queue_status": item.stage if item else None,
        "created": created,
    }
