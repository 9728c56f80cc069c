"""
Persistence helpers for trips and the Darwin feed tables.

Only the eligibility and linking columns of trips are ever written here;
darwin_events and darwin_service_calls are read-only for this service.
"""

from datetime import datetime

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.trip_domain import DelayEvent, EligibilityDecision, LinkCandidate, Trip

logger = get_logger(__name__)


class TripRepository:
    """Raw SQL helpers backing the eligibility engine and the trip linker."""

    TRIP_SELECT_COLUMNS = """
        id, user_email, operator, retailer, booking_ref, origin, destination,
        origin_crs, destination_crs, depart_planned, arrive_planned,
        eligible, eligibility_reason, delay_source, delay_minutes,
        delay_checked_at, darwin_rid
    """

    @classmethod
    def _row_to_trip(cls, row: dict | None) -> Trip | None:
        if not row:
            return None

        return Trip(
            id=str(row["id"]),
            user_email=row["user_email"],
            operator=row.get("operator"),
            retailer=row.get("retailer"),
            booking_ref=row.get("booking_ref"),
            origin=row.get("origin"),
            destination=row.get("destination"),
            origin_crs=row.get("origin_crs"),
            destination_crs=row.get("destination_crs"),
            depart_planned=row.get("depart_planned"),
            arrive_planned=row.get("arrive_planned"),
            eligible=row.get("eligible"),
            eligibility_reason=row.get("eligibility_reason"),
            delay_source=row.get("delay_source"),
            delay_minutes=row.get("delay_minutes"),
            delay_checked_at=row.get("delay_checked_at"),
            darwin_rid=row.get("darwin_rid"),
        )

    @classmethod
    async def get_trip_for_user(cls, trip_id: str, user_email: str) -> Trip | None:
        """Load a trip only if it belongs to the given user."""
        query = f"""
            SELECT {cls.TRIP_SELECT_COLUMNS}
            FROM trips
            WHERE id = %s AND lower(user_email) = lower(%s)
        """
        row = await fetch_one(query, (trip_id, user_email))
        return cls._row_to_trip(row)

    @classmethod
    async def get_trip(cls, trip_id: str) -> Trip | None:
        query = f"SELECT {cls.TRIP_SELECT_COLUMNS} FROM trips WHERE id = %s"
        row = await fetch_one(query, (trip_id,))
        return cls._row_to_trip(row)

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    @classmethod
    async def fetch_undecided_trips(
        cls, window_start: datetime, window_end: datetime, limit: int
    ) -> list[Trip]:
        """Trips with eligible = NULL whose planned departure is inside the window."""
        query = f"""
            SELECT {cls.TRIP_SELECT_COLUMNS}
            FROM trips
            WHERE is_ticket = true
              AND eligible IS NULL
              AND depart_planned >= %s
              AND depart_planned <= %s
            ORDER BY depart_planned ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (window_start, window_end, limit))
        return [cls._row_to_trip(row) for row in rows]

    @classmethod
    async def fetch_events_near(
        cls, crs: str, window_start: datetime, window_end: datetime, limit: int = 25
    ) -> list[DelayEvent]:
        """Delay events at a station around a planned time, newest first."""
        query = """
            SELECT id, rid, crs, event_type, planned_time, actual_time,
                   late_minutes, received_at
            FROM darwin_events
            WHERE crs = %s
              AND planned_time >= %s
              AND planned_time <= %s
            ORDER BY received_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (crs, window_start, window_end, limit))
        return [
            DelayEvent(
                id=str(row["id"]),
                rid=row.get("rid"),
                crs=row["crs"],
                event_type=row["event_type"],
                planned_time=row.get("planned_time"),
                actual_time=row.get("actual_time"),
                late_minutes=row.get("late_minutes"),
                received_at=row["received_at"],
            )
            for row in rows
        ]

    @classmethod
    async def record_eligibility(
        cls, trip_id: str, decision: EligibilityDecision, delay_source: str
    ) -> bool:
        """
        Persist a decided eligibility outcome.

        Guarded by eligible IS NULL so an already-decided trip is never flipped.
        Returns False when the trip was decided elsewhere in the meantime.
        """
        query = """
            UPDATE trips
            SET eligible = %s,
                eligibility_reason = %s,
                delay_source = %s,
                delay_minutes = %s,
                delay_checked_at = NOW()
            WHERE id = %s
              AND eligible IS NULL
        """
        affected = await execute_query(
            query,
            (decision.eligible, decision.reason, delay_source, decision.delay_minutes, trip_id),
        )
        return affected > 0

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    @classmethod
    async def fetch_unlinked_trips(
        cls, window_start: datetime, window_end: datetime, limit: int
    ) -> list[Trip]:
        query = f"""
            SELECT {cls.TRIP_SELECT_COLUMNS}
            FROM trips
            WHERE darwin_rid IS NULL
              AND depart_planned IS NOT NULL
              AND depart_planned >= %s
              AND depart_planned <= %s
            ORDER BY depart_planned ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (window_start, window_end, limit))
        return [cls._row_to_trip(row) for row in rows]

    @classmethod
    async def fetch_link_candidates(
        cls,
        origin_crs: str,
        destination_crs: str | None,
        window_start: datetime,
        window_end: datetime,
        limit: int = 200,
    ) -> list[LinkCandidate]:
        """Darwin runs calling at origin inside the window, with their destination call."""
        query = """
            SELECT o.rid, o.planned_depart, d.planned_arrive
            FROM darwin_service_calls o
            LEFT JOIN darwin_service_calls d
              ON d.rid = o.rid AND d.crs = %s
            WHERE o.crs = %s
              AND o.planned_depart IS NOT NULL
              AND o.planned_depart >= %s
              AND o.planned_depart <= %s
            ORDER BY o.planned_depart ASC
            LIMIT %s
        """
        rows = await fetch_all(
            query, (destination_crs or "", origin_crs, window_start, window_end, limit)
        )
        return [
            LinkCandidate(
                rid=row["rid"],
                planned_depart=row["planned_depart"],
                planned_arrive=row.get("planned_arrive"),
            )
            for row in rows
        ]

    @classmethod
    async def link_trip(cls, trip_id: str, rid: str, score_seconds: int) -> bool:
        """Attach a Darwin rid to a trip; never overwrites an existing link."""
        query = """
            UPDATE trips
            SET darwin_rid = %s,
                darwin_link_score = %s,
                darwin_linked_at = NOW()
            WHERE id = %s
              AND darwin_rid IS NULL
        """
        affected = await execute_query(query, (rid, score_seconds, trip_id))
        if affected:
            logger.info("Trip linked to Darwin run", trip_id=trip_id, rid=rid, score=score_seconds)
        return affected > 0
