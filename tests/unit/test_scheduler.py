from datetime import UTC, datetime, timedelta

import pytest

from app.jobs.scheduler import MIN_DELAY_SECONDS, JobScheduler, ScheduledJob


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _job(name, interval, results=None, calls=None):
    results = results if results is not None else {}

    async def tick():
        if calls is not None:
            calls.append(name)
        return results

    return ScheduledJob(name, tick, interval)


@pytest.mark.asyncio
async def test_jobs_run_in_due_order():
    clock = FakeClock()
    calls = []
    scheduler = JobScheduler(clock=clock, sleep=clock.sleep)
    scheduler.add(_job("fast", 5, calls=calls))
    scheduler.add(_job("slow", 30, calls=calls), delay=12)

    await scheduler.run(max_runs=5)

    assert calls == ["fast", "fast", "fast", "slow", "fast"]
    assert clock.now == 15


@pytest.mark.asyncio
async def test_next_due_hint_pulls_the_run_earlier():
    clock = FakeClock()
    scheduler = JobScheduler(clock=clock, sleep=clock.sleep)
    due = (datetime.now(UTC) + timedelta(seconds=10)).isoformat()
    job = _job("queue", 300)

    delay = scheduler.next_delay(job, {"next_due_at": due})

    assert 8 <= delay <= 10


def test_hint_in_the_past_is_clamped_to_minimum_delay():
    scheduler = JobScheduler()
    past = datetime.now(UTC) - timedelta(minutes=5)

    assert scheduler.next_delay(_job("queue", 300), {"next_due_at": past}) == MIN_DELAY_SECONDS


def test_hint_later_than_interval_is_ignored():
    scheduler = JobScheduler()
    later = (datetime.now(UTC) + timedelta(hours=2)).isoformat()

    assert scheduler.next_delay(_job("queue", 30), {"next_due_at": later}) == 30


def test_unparseable_hint_falls_back_to_interval():
    scheduler = JobScheduler()

    assert scheduler.next_delay(_job("queue", 30), {"next_due_at": "soon"}) == 30
    assert scheduler.next_delay(_job("queue", 30), {}) == 30


@pytest.mark.asyncio
async def test_raising_tick_is_rescheduled():
    clock = FakeClock()
    scheduler = JobScheduler(clock=clock, sleep=clock.sleep)

    async def broken():
        raise RuntimeError("boom")

    scheduler.add(ScheduledJob("broken", broken, 20))

    assert await scheduler.run_next() == "broken"
    assert await scheduler.run_next() == "broken"
    assert clock.sleeps == [20]


def test_duplicate_job_names_rejected():
    scheduler = JobScheduler()
    scheduler.add(_job("a", 5))

    with pytest.raises(ValueError):
        scheduler.add(_job("a", 10))
