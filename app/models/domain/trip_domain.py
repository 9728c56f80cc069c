"""
Domain records for ingested trips and the Darwin delay feed.

Trips are written by the ingestion pipeline; delay events and service
calls by the Darwin processor. This service only reads them, except for
the eligibility and linking columns on trips.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class Trip:
    """Represents a trips row."""

    id: str
    user_email: str
    operator: str | None
    retailer: str | None
    booking_ref: str | None
    origin: str | None
    destination: str | None
    origin_crs: str | None
    destination_crs: str | None
    depart_planned: datetime | None
    arrive_planned: datetime | None
    eligible: bool | None = None
    eligibility_reason: str | None = None
    delay_source: str | None = None
    delay_minutes: int | None = None
    delay_checked_at: datetime | None = None
    darwin_rid: str | None = None


@dataclass(slots=True)
class DelayEvent:
    """Represents a darwin_events row (append-only)."""

    id: str
    crs: str
    event_type: str  # ARR, DEP or a cancellation marker
    planned_time: datetime | None
    actual_time: datetime | None
    late_minutes: int | None
    received_at: datetime
    rid: str | None = None

    @property
    def is_cancellation(self) -> bool:
        return "CAN" in (self.event_type or "").upper()

    @property
    def has_outcome(self) -> bool:
        return self.actual_time is not None or self.late_minutes is not None


@dataclass(slots=True)
class LinkCandidate:
    """A Darwin run (rid) calling at the trip's origin, optionally its destination."""

    rid: str
    planned_depart: datetime
    planned_arrive: datetime | None = None


@dataclass(slots=True)
class EligibilityDecision:
    """Outcome of evaluating one trip against its delay events."""

    eligible: bool | None
    reason: str
    delay_minutes: int | None = None
    skip_reason: str | None = None

    @property
    def decided(self) -> bool:
        return self.eligible is not None
