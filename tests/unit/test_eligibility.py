from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from factories import ARRIVE, make_event, make_trip

from app.db.helpers import DatabaseError
from app.services.eligibility_service import (
    choose_event,
    evaluate_events,
    run_eligibility_pass,
)

NOW = ARRIVE + timedelta(hours=1)


def _undecided_trip(**overrides):
    return make_trip(eligible=None, eligibility_reason=None, delay_minutes=None, **overrides)


def _patch_repo(monkeypatch, trips, events=None, record=True):
    fetch_trips = AsyncMock(return_value=trips)
    fetch_events = AsyncMock(return_value=events or [])
    record_mock = AsyncMock(return_value=record)
    monkeypatch.setattr(
        "app.services.eligibility_service.TripRepository.fetch_undecided_trips", fetch_trips
    )
    monkeypatch.setattr("app.services.eligibility_service.TripRepository.fetch_events_near", fetch_events)
    monkeypatch.setattr("app.services.eligibility_service.TripRepository.record_eligibility", record_mock)
    return fetch_trips, fetch_events, record_mock


def test_cancellation_event_makes_trip_eligible():
    decision = evaluate_events([make_event(event_type="CANCELLED")], threshold_minutes=15)

    assert decision.eligible is True
    assert "cancelled" in decision.reason.lower()


def test_late_minutes_at_or_above_threshold_is_eligible():
    decision = evaluate_events([make_event(late_minutes=22)], threshold_minutes=15)

    assert decision.eligible is True
    assert decision.delay_minutes == 22
    assert decision.reason == "Delayed 22 min (Darwin)"


def test_late_minutes_below_threshold_is_not_eligible():
    decision = evaluate_events([make_event(late_minutes=10)], threshold_minutes=15)

    assert decision.eligible is False
    assert decision.delay_minutes == 10
    assert "below threshold" in decision.reason


def test_lateness_derived_from_planned_and_actual_times():
    event = make_event(actual_time=ARRIVE + timedelta(minutes=31, seconds=40))

    decision = evaluate_events([event], threshold_minutes=15)

    assert decision.eligible is True
    assert decision.delay_minutes == 32


def test_early_arrival_counts_as_zero_minutes():
    event = make_event(actual_time=ARRIVE - timedelta(minutes=3))

    decision = evaluate_events([event], threshold_minutes=15)

    assert decision.eligible is False
    assert decision.delay_minutes == 0


def test_no_usable_data_leaves_trip_undecided():
    decision = evaluate_events([make_event()], threshold_minutes=15)

    assert decision.eligible is None
    assert decision.skip_reason == "no_usable_data"


def test_choose_event_prefers_newest_record_with_an_outcome():
    newest_without_outcome = make_event(id="e1", received_at=ARRIVE + timedelta(minutes=50))
    with_outcome = make_event(id="e2", late_minutes=18, received_at=ARRIVE + timedelta(minutes=40))
    older_with_outcome = make_event(id="e3", late_minutes=5, received_at=ARRIVE + timedelta(minutes=20))

    chosen = choose_event([newest_without_outcome, with_outcome, older_with_outcome])

    assert chosen.id == "e2"


def test_choose_event_falls_back_to_newest_record():
    events = [make_event(id="e1"), make_event(id="e2")]

    assert choose_event(events).id == "e1"


@pytest.mark.asyncio
async def test_pass_records_decision_and_counts(monkeypatch):
    trip = _undecided_trip()
    _, fetch_events, record_mock = _patch_repo(
        monkeypatch, [trip], events=[make_event(late_minutes=22)]
    )

    result = await run_eligibility_pass(now=NOW)

    assert result["examined"] == 1
    assert result["updated"] == 1
    crs, start, end = fetch_events.await_args.args
    assert crs == "BHM"
    assert start == ARRIVE - timedelta(hours=2)
    assert end == ARRIVE + timedelta(hours=2)
    trip_id, decision, source = record_mock.await_args.args
    assert trip_id == trip.id
    assert decision.eligible is True
    assert decision.delay_minutes == 22
    assert source == "darwin"


@pytest.mark.asyncio
async def test_pass_skips_trips_not_yet_past_arrival_buffer(monkeypatch):
    trip = _undecided_trip(arrive_planned=NOW - timedelta(minutes=5))
    _, fetch_events, record_mock = _patch_repo(monkeypatch, [trip])

    result = await run_eligibility_pass(now=NOW)

    assert result["skipped"]["not_arrived_yet"] == 1
    fetch_events.assert_not_awaited()
    record_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_pass_skips_missing_crs_and_times(monkeypatch):
    trips = [
        _undecided_trip(id="t1", destination_crs=None),
        _undecided_trip(id="t2", destination_crs="BIRMINGHAM"),
        _undecided_trip(id="t3", arrive_planned=None),
    ]
    _patch_repo(monkeypatch, trips)

    result = await run_eligibility_pass(now=NOW)

    assert result["examined"] == 3
    assert result["updated"] == 0
    assert result["skipped"]["no_crs"] == 2
    assert result["skipped"]["no_times"] == 1


@pytest.mark.asyncio
async def test_pass_leaves_trip_unknown_without_usable_data(monkeypatch):
    _, _, record_mock = _patch_repo(monkeypatch, [_undecided_trip()], events=[make_event()])

    result = await run_eligibility_pass(now=NOW)

    assert result["skipped"]["no_usable_data"] == 1
    record_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_already_decided_trip_is_never_rewritten(monkeypatch):
    decided = make_trip(eligible=False, eligibility_reason="Delayed 3 min (Darwin)")
    _, fetch_events, record_mock = _patch_repo(monkeypatch, [decided])

    result = await run_eligibility_pass(now=NOW)

    assert result["updated"] == 0
    assert result["skipped"]["already_decided"] == 1
    fetch_events.assert_not_awaited()
    record_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_guarded_update_that_loses_the_race_counts_as_already_decided(monkeypatch):
    _patch_repo(monkeypatch, [_undecided_trip()], events=[make_event(late_minutes=40)], record=False)

    result = await run_eligibility_pass(now=NOW)

    assert result["updated"] == 0
    assert result["skipped"]["already_decided"] == 1


@pytest.mark.asyncio
async def test_update_failure_does_not_abort_the_batch(monkeypatch):
    trips = [_undecided_trip(id="t1"), _undecided_trip(id="t2")]
    _, _, record_mock = _patch_repo(monkeypatch, trips, events=[make_event(late_minutes=30)])
    record_mock.side_effect = [DatabaseError("boom", operation="execute"), True]

    result = await run_eligibility_pass(now=NOW)

    assert result["examined"] == 2
    assert result["updated"] == 1
    assert result["skipped"]["db_update_failed"] == 1
