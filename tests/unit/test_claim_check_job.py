from unittest.mock import AsyncMock

import pytest
from factories import make_claim, make_queue_item

from app.db.helpers import DatabaseError
from app.jobs.claim_check_job import ClaimCheckJob
from app.models.domain.claim_domain import QueueStage

JOB = "app.jobs.claim_check_job"


@pytest.fixture
def repos(monkeypatch):
    mocks = {
        "requeue_stale_processing": AsyncMock(return_value=0),
        "pop_due_checks": AsyncMock(return_value=[]),
        "reschedule": AsyncMock(),
        "get_claim": AsyncMock(return_value=make_claim(status="submitted")),
    }
    for name in ("requeue_stale_processing", "pop_due_checks", "reschedule"):
        monkeypatch.setattr(f"{JOB}.ClaimQueueRepository.{name}", mocks[name])
    monkeypatch.setattr(f"{JOB}.ClaimRepository.get_claim", mocks["get_claim"])
    monkeypatch.setattr(f"{JOB}.settings.SUBMIT_LIVE", False)
    return mocks


@pytest.mark.asyncio
async def test_submitted_claim_finalises_queue_item(repos):
    item = make_queue_item(stage="check")
    repos["pop_due_checks"].return_value = [item]

    result = await ClaimCheckJob().run_once()

    assert result["ok"] is True
    assert result["checked"] == 1
    assert result["outcomes"] == {"finalised": 1}
    repos["reschedule"].assert_awaited_once_with(item.id, stage=QueueStage.SUBMITTED, delay_seconds=None)


@pytest.mark.asyncio
async def test_failed_claim_is_dead_lettered_with_its_error(repos):
    repos["pop_due_checks"].return_value = [make_queue_item(stage="check", last_error="no_provider_for_operator")]
    repos["get_claim"].return_value = make_claim(status="failed", error="no_provider_for_operator")

    result = await ClaimCheckJob().run_once()

    assert result["outcomes"] == {"dead_lettered": 1}
    kwargs = repos["reschedule"].await_args.kwargs
    assert kwargs["stage"] == QueueStage.FAILED
    assert kwargs["last_error"] == "no_provider_for_operator"


@pytest.mark.asyncio
async def test_missing_claim_is_dead_lettered(repos):
    repos["pop_due_checks"].return_value = [make_queue_item(stage="check")]
    repos["get_claim"].return_value = None

    result = await ClaimCheckJob().run_once()

    assert result["outcomes"] == {"dead_lettered": 1}
    assert repos["reschedule"].await_args.kwargs["last_error"] == "claim_missing"


@pytest.mark.asyncio
async def test_other_claims_are_parked_for_another_day(repos):
    repos["pop_due_checks"].return_value = [make_queue_item(stage="check")]
    repos["get_claim"].return_value = make_claim(status="ready")

    result = await ClaimCheckJob().run_once()

    assert result["outcomes"] == {"parked": 1}
    kwargs = repos["reschedule"].await_args.kwargs
    assert kwargs["stage"] == QueueStage.CHECK
    assert kwargs["delay_seconds"] == 24 * 3600


@pytest.mark.asyncio
async def test_ready_claim_goes_back_to_the_queue_once_live(repos, monkeypatch):
    monkeypatch.setattr(f"{JOB}.settings.SUBMIT_LIVE", True)
    item = make_queue_item(stage="check", last_error="awaiting_live_submission")
    repos["pop_due_checks"].return_value = [item]
    repos["get_claim"].return_value = make_claim(status="ready")

    result = await ClaimCheckJob().run_once()

    assert result["outcomes"] == {"requeued_live": 1}
    repos["reschedule"].assert_awaited_once_with(item.id, stage=QueueStage.QUEUED, delay_seconds=0)


@pytest.mark.asyncio
async def test_database_error_on_one_item_does_not_stop_the_batch(repos):
    repos["pop_due_checks"].return_value = [
        make_queue_item(id="q1", stage="check"),
        make_queue_item(id="q2", stage="check"),
    ]
    repos["get_claim"].side_effect = [DatabaseError("boom", operation="fetch_one"), make_claim(status="emailed")]

    result = await ClaimCheckJob().run_once()

    assert result["checked"] == 2
    assert result["outcomes"] == {"db_error": 1, "finalised": 1}


@pytest.mark.asyncio
async def test_stale_processing_items_are_requeued_first(repos):
    repos["requeue_stale_processing"].return_value = 2

    result = await ClaimCheckJob().run_once()

    assert result["stale_requeued"] == 2
    repos["requeue_stale_processing"].assert_awaited_once_with(360)
