from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from factories import make_trip

from app.models.domain.trip_domain import LinkCandidate
from app.services.trip_linker_service import (
    link_trip,
    pick_best_candidate,
    run_link_pass,
    score_candidate,
)


def _unlinked_trip(**overrides):
    return make_trip(darwin_rid=None, **overrides)


def _candidate(rid, depart_offset_min, arrive_offset_min=None, trip=None):
    trip = trip or _unlinked_trip()
    return LinkCandidate(
        rid=rid,
        planned_depart=trip.depart_planned + timedelta(minutes=depart_offset_min),
        planned_arrive=(
            trip.arrive_planned + timedelta(minutes=arrive_offset_min)
            if arrive_offset_min is not None
            else None
        ),
    )


def test_score_sums_departure_and_arrival_gaps():
    trip = _unlinked_trip()

    assert score_candidate(trip, _candidate("r1", 2, -3)) == 300


def test_score_doubles_departure_gap_without_arrival():
    trip = _unlinked_trip()

    assert score_candidate(trip, _candidate("r1", -4)) == 480


def test_best_candidate_wins():
    trip = _unlinked_trip()
    candidates = [_candidate("far", 30, 30), _candidate("near", 1, 0), _candidate("mid", 5, 5)]

    best, score, reason = pick_best_candidate(trip, candidates, max_score_seconds=5400)

    assert best.rid == "near"
    assert score == 60
    assert reason is None


def test_candidate_above_max_score_is_rejected():
    trip = _unlinked_trip()

    best, score, reason = pick_best_candidate(trip, [_candidate("r1", 60, 60)], max_score_seconds=5400)

    assert best is None
    assert score == 7200
    assert reason == "score_above_max"


def test_ambiguous_candidates_rejected_when_margin_configured():
    trip = _unlinked_trip()
    candidates = [_candidate("a", 1, 1), _candidate("b", -1, -2)]

    best, _, reason = pick_best_candidate(
        trip, candidates, max_score_seconds=5400, min_margin_seconds=120
    )

    assert best is None
    assert reason == "ambiguous"


def test_margin_disabled_by_default():
    trip = _unlinked_trip()
    candidates = [_candidate("a", 1, 1), _candidate("b", -1, -2)]

    best, _, _ = pick_best_candidate(trip, candidates, max_score_seconds=5400)

    assert best.rid == "a"


@pytest.mark.asyncio
async def test_link_trip_writes_best_rid(monkeypatch):
    trip = _unlinked_trip()
    fetch = AsyncMock(return_value=[_candidate("r1", 2, 2), _candidate("r2", 20, 20)])
    link = AsyncMock(return_value=True)
    monkeypatch.setattr("app.services.trip_linker_service.TripRepository.fetch_link_candidates", fetch)
    monkeypatch.setattr("app.services.trip_linker_service.TripRepository.link_trip", link)

    linked, reason = await link_trip(trip)

    assert linked is True
    assert reason is None
    link.assert_awaited_once_with(trip.id, "r1", 240)
    origin, destination, start, end = fetch.await_args.args
    assert (origin, destination) == ("EUS", "BHM")
    assert start == trip.depart_planned - timedelta(seconds=5400)
    assert end == trip.depart_planned + timedelta(seconds=5400)


@pytest.mark.asyncio
async def test_linked_trip_is_not_reevaluated(monkeypatch):
    fetch = AsyncMock()
    monkeypatch.setattr("app.services.trip_linker_service.TripRepository.fetch_link_candidates", fetch)

    linked, reason = await link_trip(make_trip(darwin_rid="202503147654321"))

    assert linked is False
    assert reason == "already_linked"
    fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_link_pass_counts_links_and_skips(monkeypatch):
    trips = [
        _unlinked_trip(id="t1"),
        _unlinked_trip(id="t2", origin_crs=None),
    ]
    monkeypatch.setattr(
        "app.services.trip_linker_service.TripRepository.fetch_unlinked_trips",
        AsyncMock(return_value=trips),
    )
    monkeypatch.setattr(
        "app.services.trip_linker_service.TripRepository.fetch_link_candidates",
        AsyncMock(return_value=[_candidate("r1", 0, 0)]),
    )
    monkeypatch.setattr(
        "app.services.trip_linker_service.TripRepository.link_trip", AsyncMock(return_value=True)
    )

    result = await run_link_pass()

    assert result == {"scanned": 2, "linked": 1, "skipped": {"no_crs": 1}}
