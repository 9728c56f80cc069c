"""
Eligibility engine.

Decides, once per trip, whether a journey qualifies for compensation by
looking at Darwin delay events at the destination station around the
planned arrival. Decided trips are never re-evaluated.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.trip_domain import DelayEvent, EligibilityDecision, Trip
from app.repositories.trip_repository import TripRepository

logger = get_logger(__name__)

DELAY_SOURCE = "darwin"

SKIP_REASONS = (
    "no_crs",
    "no_times",
    "not_arrived_yet",
    "no_events",
    "no_usable_data",
    "already_decided",
    "db_update_failed",
)


def choose_event(events: list[DelayEvent]) -> DelayEvent | None:
    """
    Pick the event to decide on.

    Events arrive newest-first; the first one carrying an outcome (actual
    time or lateness) wins, otherwise the newest record is used.
    """
    if not events:
        return None
    for event in events:
        if event.has_outcome:
            return event
    return events[0]


def _lateness_minutes(event: DelayEvent) -> int | None:
    if event.late_minutes is not None:
        return int(event.late_minutes)
    if event.actual_time and event.planned_time:
        seconds = (event.actual_time - event.planned_time).total_seconds()
        return max(0, round(seconds / 60))
    return None


def evaluate_events(events: list[DelayEvent], threshold_minutes: int) -> EligibilityDecision:
    """
    Turn the delay events near a trip's arrival into a decision.

    Cancellation beats everything; otherwise lateness (explicit, or derived
    from planned/actual times) is compared with the threshold. Without
    usable data the decision stays undecided with a skip reason.
    """
    chosen = choose_event(events)
    if chosen is None:
        return EligibilityDecision(
            eligible=None, reason="Darwin: no events", skip_reason="no_events"
        )

    if chosen.is_cancellation:
        return EligibilityDecision(
            eligible=True,
            reason="Train cancelled (Darwin)",
            delay_minutes=_lateness_minutes(chosen),
        )

    minutes = _lateness_minutes(chosen)
    if minutes is None:
        return EligibilityDecision(
            eligible=None,
            reason="Darwin: no usable delay data",
            skip_reason="no_usable_data",
        )

    if minutes >= threshold_minutes:
        reason = f"Delayed {minutes} min (Darwin)"
    else:
        reason = f"Delayed {minutes} min (below threshold of {threshold_minutes} min, Darwin)"

    return EligibilityDecision(eligible=minutes >= threshold_minutes, reason=reason, delay_minutes=minutes)


def _normalise_crs(crs: str | None) -> str | None:
    value = (crs or "").strip().upper()
    return value if len(value) == 3 else None


async def evaluate_trip(trip: Trip, now: datetime) -> EligibilityDecision:
    """Evaluate one trip against the delay feed. Does not persist anything."""
    if trip.eligible is not None:
        return EligibilityDecision(
            eligible=trip.eligible,
            reason=trip.eligibility_reason or "",
            delay_minutes=trip.delay_minutes,
            skip_reason="already_decided",
        )

    destination = _normalise_crs(trip.destination_crs)
    if not destination:
        return EligibilityDecision(eligible=None, reason="", skip_reason="no_crs")

    if not trip.arrive_planned:
        return EligibilityDecision(eligible=None, reason="", skip_reason="no_times")

    lock_after = trip.arrive_planned + timedelta(minutes=settings.ELIG_ARRIVAL_BUFFER_MIN)
    if now < lock_after:
        return EligibilityDecision(eligible=None, reason="", skip_reason="not_arrived_yet")

    window = timedelta(hours=settings.ELIG_EVENT_WINDOW_HOURS)
    events = await TripRepository.fetch_events_near(
        destination, trip.arrive_planned - window, trip.arrive_planned + window
    )
    return evaluate_events(events, settings.ELIG_MIN_DELAY_MINUTES)


async def run_eligibility_pass(now: datetime | None = None) -> dict[str, Any]:
    """
    One pass of the eligibility engine over undecided trips in the window.

    A failure on one trip is counted as a skip and never aborts the batch.
    """
    now = now or datetime.now(UTC)
    window_start = now - timedelta(hours=settings.ELIG_WINDOW_PAST_HOURS)
    window_end = now + timedelta(hours=settings.ELIG_WINDOW_FUTURE_HOURS)

    trips = await TripRepository.fetch_undecided_trips(
        window_start, window_end, settings.ELIG_BATCH_SIZE
    )

    examined = 0
    updated = 0
    skipped = dict.fromkeys(SKIP_REASONS, 0)

    for trip in trips:
        examined += 1
        try:
            decision = await evaluate_trip(trip, now)
        except DatabaseError as e:
            logger.warning("Delay event lookup failed", trip_id=trip.id, error=str(e))
            skipped["no_events"] += 1
            continue

        if not decision.decided or decision.skip_reason:
            skipped[decision.skip_reason or "no_usable_data"] += 1
            continue

        try:
            written = await TripRepository.record_eligibility(trip.id, decision, DELAY_SOURCE)
        except DatabaseError as e:
            logger.error("Eligibility update failed", trip_id=trip.id, error=str(e))
            skipped["db_update_failed"] += 1
            continue

        if not written:
            skipped["already_decided"] += 1
            continue

        updated += 1
        logger.info(
            "Trip eligibility decided",
            trip_id=trip.id,
            eligible=decision.eligible,
            delay_minutes=decision.delay_minutes,
            reason=decision.reason,
        )

    return {
        "window": {"from": window_start.isoformat(), "to": window_end.isoformat()},
        "examined": examined,
        "updated": updated,
        "skipped": skipped,
        "config": {
            "window_past_hours": settings.ELIG_WINDOW_PAST_HOURS,
            "window_future_hours": settings.ELIG_WINDOW_FUTURE_HOURS,
            "arrival_buffer_min": settings.ELIG_ARRIVAL_BUFFER_MIN,
            "min_delay_minutes": settings.ELIG_MIN_DELAY_MINUTES,
        },
    }
