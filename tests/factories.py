"""Builders for domain records used across the unit tests."""

from datetime import UTC, datetime, timedelta

from app.models.domain.claim_domain import Claim, NotificationJob, QueueItem
from app.models.domain.trip_domain import DelayEvent, Trip

ARRIVE = datetime(2025, 3, 14, 18, 30, tzinfo=UTC)


def make_trip(**overrides) -> Trip:
    data = {
        "id": "11111111-1111-4111-8111-111111111111",
        "user_email": "rider@example.com",
        "operator": "Avanti West Coast",
        "retailer": "Trainline",
        "booking_ref": "ABC12345",
        "origin": "London Euston",
        "destination": "Birmingham New Street",
        "origin_crs": "EUS",
        "destination_crs": "BHM",
        "depart_planned": ARRIVE - timedelta(minutes=82),
        "arrive_planned": ARRIVE,
        "eligible": True,
        "eligibility_reason": "Delayed 22 min (Darwin)",
        "delay_minutes": 22,
    }
    data.update(overrides)
    return Trip(**data)


def make_event(**overrides) -> DelayEvent:
    data = {
        "id": "evt-1",
        "crs": "BHM",
        "event_type": "ARR",
        "planned_time": ARRIVE,
        "actual_time": None,
        "late_minutes": None,
        "received_at": ARRIVE + timedelta(minutes=30),
    }
    data.update(overrides)
    return DelayEvent(**data)


def make_claim(**overrides) -> Claim:
    data = {
        "id": "22222222-2222-4222-8222-222222222222",
        "trip_id": "11111111-1111-4111-8111-111111111111",
        "user_email": "rider@example.com",
        "status": "pending",
        "fee_pct": 20,
        "provider": "avanti",
        "operator": "Avanti West Coast",
        "booking_ref": "ABC12345",
        "origin": "London Euston",
        "destination": "Birmingham New Street",
        "depart_planned": ARRIVE - timedelta(minutes=82),
        "arrive_planned": ARRIVE,
        "delay_minutes": 22,
    }
    data.update(overrides)
    return Claim(**data)


def make_queue_item(**overrides) -> QueueItem:
    data = {
        "id": "33333333-3333-4333-8333-333333333333",
        "claim_id": "22222222-2222-4222-8222-222222222222",
        "provider": "avanti",
        "stage": "processing",
        "attempts": 1,
        "next_attempt_at": None,
    }
    data.update(overrides)
    return QueueItem(**data)


def make_notification(**overrides) -> NotificationJob:
    data = {
        "id": "44444444-4444-4444-8444-444444444444",
        "claim_id": "22222222-2222-4222-8222-222222222222",
        "trip_id": "11111111-1111-4111-8111-111111111111",
        "to_email": "rider@example.com",
        "template": "claim_ready",
        "subject": "Your delay claim is ready",
        "payload": {
            "operator": "Avanti West Coast",
            "origin": "London Euston",
            "destination": "Birmingham New Street",
            "delay_minutes": 22,
            "claim_url": "https://www.avantiwestcoast.co.uk/help-and-support/delay-repay",
        },
        "status": "sending",
        "attempt_count": 0,
        "next_attempt_at": None,
    }
    data.update(overrides)
    return NotificationJob(**data)
