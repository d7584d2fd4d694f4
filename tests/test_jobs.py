# tests/test_jobs.py
from datetime import datetime, timedelta

import pytest

from conftest import NOW, FakeClient
from focus_engine.db import get_setting, init_db
from focus_engine.errors import NotFoundError
from focus_engine.jobs import MONDAY, SUNDAY, DailyJob, IntervalJob, Scheduler, WeeklyJob, default_jobs


def _noop(now):
    return {"ran_at": now.isoformat()}


def test_interval_job_counts_days_from_last_run():
    job = IntervalJob("decay", _noop, every_days=3)
    assert job.next_run_time(datetime(2025, 3, 1, 12)) == datetime(2025, 3, 4)
    assert job.next_run_time(datetime(2025, 3, 4)) == datetime(2025, 3, 7)
    assert job.next_run_time(datetime(2025, 3, 31, 1)) == datetime(2025, 4, 3)


def test_interval_job_keeps_cadence_across_month_ends():
    job = IntervalJob("decay", _noop, every_days=3)
    runs = [datetime(2025, 1, 28)]
    for _ in range(6):
        runs.append(job.next_run_time(runs[-1]))
    gaps = [(b - a).days for a, b in zip(runs, runs[1:])]
    assert gaps == [3] * 6
    assert runs[1:3] == [datetime(2025, 1, 31), datetime(2025, 2, 3)]
    assert runs[-1] == datetime(2025, 2, 15)


def test_interval_job_due_three_days_after_last_run():
    job = IntervalJob("decay", _noop, every_days=3)
    last = datetime(2025, 1, 31, 0, 5)
    assert not job.is_due(last, datetime(2025, 2, 1, 0, 5))
    assert not job.is_due(last, datetime(2025, 2, 2, 23, 59))
    assert job.is_due(last, datetime(2025, 2, 3, 0, 0))


def test_daily_job():
    job = DailyJob("tolerance", _noop, hour=1)
    assert job.next_run_time(NOW) == datetime(2025, 3, 4, 1)


def test_weekly_jobs():
    monday = WeeklyJob("plans", _noop, weekday=MONDAY, hour=6)
    sunday = WeeklyJob("revision", _noop, weekday=SUNDAY, hour=6)
    assert monday.next_run_time(NOW) == datetime(2025, 3, 10, 6)
    assert sunday.next_run_time(NOW) == datetime(2025, 3, 9, 6)


def test_is_due():
    job = DailyJob("tolerance", _noop, hour=1)
    assert job.is_due(None, NOW)
    assert job.is_due(NOW - timedelta(days=1), NOW)
    assert not job.is_due(NOW.replace(hour=1), NOW)


def test_weekly_job_not_due_mid_week_after_running():
    job = WeeklyJob("plans", _noop, weekday=MONDAY, hour=6)
    assert not job.is_due(NOW, NOW + timedelta(days=2))
    assert job.is_due(NOW, NOW + timedelta(days=7))


def test_scheduler_records_last_run(tmp_db):
    init_db(tmp_db)
    calls = []
    job = DailyJob("tolerance", lambda now: calls.append(now) or {"processed": 0}, hour=1)
    scheduler = Scheduler(tmp_db, [job])
    assert scheduler.run_pending(NOW) == {"tolerance": {"processed": 0}}
    assert get_setting(tmp_db, "job:tolerance:last_run") == NOW.isoformat()
    assert scheduler.run_pending(NOW + timedelta(hours=5)) == {}
    assert len(calls) == 1
    scheduler.run_pending(NOW + timedelta(days=1))
    assert len(calls) == 2


def test_failed_job_is_retried(tmp_db):
    init_db(tmp_db)

    def boom(now):
        raise RuntimeError("disk full")

    scheduler = Scheduler(tmp_db, [DailyJob("flaky", boom), DailyJob("fine", _noop)])
    results = scheduler.run_pending(NOW)
    assert results["flaky"] == {"error": "disk full"}
    assert "ran_at" in results["fine"]
    assert scheduler.last_run(scheduler.jobs[0]) is None
    assert [j.name for j in scheduler.due_jobs(NOW)] == ["flaky"]


def test_run_job_by_name(tmp_db):
    init_db(tmp_db)
    scheduler = Scheduler(tmp_db, [DailyJob("tolerance", _noop)])
    assert scheduler.run_job("tolerance", NOW) == {"ran_at": NOW.isoformat()}
    with pytest.raises(NotFoundError):
        scheduler.run_job("missing", NOW)


def test_default_jobs(world):
    jobs = default_jobs(world["db"], FakeClient())
    assert [j.name for j in jobs] == ["token_decay", "tolerance_check", "weekly_plans", "sunday_revision"]
    tolerance = jobs[1].run(NOW)
    assert tolerance["processed"] == 0
    decay = jobs[0].run(NOW + timedelta(days=4))
    assert decay["decayed"] == 1
