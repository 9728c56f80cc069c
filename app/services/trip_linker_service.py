"""
Trip to Darwin run linker.

Correlates a trip with a Darwin run id (rid) by planned-time proximity,
before any delay outcome exists. A trip is linked at most once.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.trip_domain import LinkCandidate, Trip
from app.repositories.trip_repository import TripRepository

logger = get_logger(__name__)


def score_candidate(trip: Trip, candidate: LinkCandidate) -> int:
    """
    Seconds between the trip's planned times and the run's planned times.

    When either side lacks an arrival the departure gap is counted twice
    so scores stay comparable across candidates.
    """
    depart_gap = abs((trip.depart_planned - candidate.planned_depart).total_seconds())
    if trip.arrive_planned and candidate.planned_arrive:
        arrive_gap = abs((trip.arrive_planned - candidate.planned_arrive).total_seconds())
        return int(round(depart_gap + arrive_gap))
    return int(round(depart_gap * 2))


def pick_best_candidate(
    trip: Trip,
    candidates: list[LinkCandidate],
    max_score_seconds: int,
    min_margin_seconds: int = 0,
) -> tuple[LinkCandidate | None, int | None, str | None]:
    """
    Return (candidate, score, rejection_reason) for the best-scoring run.

    A candidate is accepted only under the score ceiling and, when a margin
    is configured, only if it beats the runner-up by more than the margin.
    """
    if not candidates:
        return None, None, "no_candidates"

    # one entry per rid; a run can appear twice if the feed re-sent its calls
    best_by_rid: dict[str, tuple[int, LinkCandidate]] = {}
    for candidate in candidates:
        score = score_candidate(trip, candidate)
        current = best_by_rid.get(candidate.rid)
        if current is None or score < current[0]:
            best_by_rid[candidate.rid] = (score, candidate)

    ranked = sorted(best_by_rid.values(), key=lambda pair: (pair[0], pair[1].rid))
    best_score, best = ranked[0]

    if best_score > max_score_seconds:
        return None, best_score, "score_above_max"

    if min_margin_seconds > 0 and len(ranked) > 1:
        runner_up_score = ranked[1][0]
        if runner_up_score - best_score <= min_margin_seconds:
            return None, best_score, "ambiguous"

    return best, best_score, None


async def link_trip(trip: Trip) -> tuple[bool, str | None]:
    """Try to link one trip. Returns (linked, skip_reason)."""
    if trip.darwin_rid:
        return False, "already_linked"

    origin = (trip.origin_crs or "").strip().upper()
    if len(origin) != 3:
        return False, "no_crs"
    if not trip.depart_planned:
        return False, "no_times"

    destination = (trip.destination_crs or "").strip().upper() or None
    reach = timedelta(seconds=settings.LINK_MAX_SCORE_SECONDS)
    candidates = await TripRepository.fetch_link_candidates(
        origin,
        destination,
        trip.depart_planned - reach,
        trip.depart_planned + reach,
    )

    best, score, reason = pick_best_candidate(
        trip,
        candidates,
        settings.LINK_MAX_SCORE_SECONDS,
        settings.LINK_MIN_MARGIN_SECONDS,
    )
    if best is None:
        return False, reason

    linked = await TripRepository.link_trip(trip.id, best.rid, score)
    return (True, None) if linked else (False, "already_linked")


async def run_link_pass(now: datetime | None = None) -> dict[str, Any]:
    """One linker pass over unlinked trips departing within the day window."""
    now = now or datetime.now(UTC)
    window_start = now - timedelta(days=settings.LINK_WINDOW_PAST_DAYS)
    window_end = now + timedelta(days=settings.LINK_WINDOW_FUTURE_DAYS)

    trips = await TripRepository.fetch_unlinked_trips(
        window_start, window_end, settings.LINK_BATCH_SIZE
    )

    linked = 0
    skipped: dict[str, int] = {}
    for trip in trips:
        try:
            ok, reason = await link_trip(trip)
        except DatabaseError as e:
            logger.error("Trip link failed", trip_id=trip.id, error=str(e))
            ok, reason = False, "db_error"

        if ok:
            linked += 1
        else:
            skipped[reason] = skipped.get(reason, 0) + 1

    return {"scanned": len(trips), "linked": linked, "skipped": skipped}
