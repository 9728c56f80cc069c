from unittest.mock import AsyncMock

import pytest

from app.jobs import worker


@pytest.fixture
def pool(monkeypatch):
    initialize = AsyncMock()
    close = AsyncMock()
    monkeypatch.setattr(worker.db_pool, "initialize", initialize)
    monkeypatch.setattr(worker.db_pool, "close", close)
    return initialize, close


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch, pool):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True
    pool[0].assert_awaited_once()
    pool[1].assert_awaited_once()


@pytest.mark.asyncio
async def test_run_worker_closes_pool_when_job_fails(monkeypatch, pool):
    async def failing_job():
        raise RuntimeError("boom")

    monkeypatch.setitem(worker.JOB_REGISTRY, "failing", failing_job)

    with pytest.raises(RuntimeError):
        await worker.run_worker("failing")

    pool[1].assert_awaited_once()


@pytest.mark.asyncio
async def test_run_worker_unknown_job(pool):
    with pytest.raises(ValueError):
        await worker.run_worker("missing")

    pool[0].assert_not_awaited()


def test_registry_covers_every_pipeline_job():
    assert set(worker.JOB_REGISTRY) == {
        "eligibility",
        "trip_link",
        "claim_queue",
        "claim_check",
        "notifications",
    }
    assert {job.name for job in worker.ALL_JOBS} == set(worker.JOB_REGISTRY)


def test_all_runs_the_combined_scheduler():
    assert worker._get_job("all") is worker.run_all_jobs


def test_job_name_defaults_to_all(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "all"


def test_job_name_from_environment(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", " Claim_Queue ")

    assert worker._resolve_job_name() == "claim_queue"


def test_build_scheduler_rejects_duplicate_jobs():
    with pytest.raises(ValueError):
        worker.build_scheduler((worker.claim_queue_job, worker.claim_queue_job))
