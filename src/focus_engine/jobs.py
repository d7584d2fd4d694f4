"""Periodic jobs: token decay, tolerance checks and plan generation.

Each job knows its own calendar (``next_run_time``) and what to do
(``run``). The ``Scheduler`` keeps the last run of every job in the
settings table and runs whatever has come due. A job never runs twice on
the same calendar day, and a run missed while the process was down is
caught up once on the next tick.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable

from focus_engine.db import get_setting, set_setting
from focus_engine.decay import run_token_decay
from focus_engine.errors import NotFoundError
from focus_engine.planner import run_revision_plans, run_weekly_plans
from focus_engine.tolerance import run_tolerance_check

logger = logging.getLogger(__name__)

MONDAY, SUNDAY = 0, 6


class Job:
    """A named action that runs at ``hour:minute`` on the days ``runs_on`` accepts."""

    period_days = 1

    def __init__(self, name: str, action: Callable[[datetime], dict], hour: int = 0, minute: int = 0):
        self.name = name
        self.action = action
        self.at = time(hour, minute)

    def runs_on(self, day: date) -> bool:
        return True

    def next_run_time(self, last_run: datetime) -> datetime:
        """First scheduled time strictly after ``last_run``."""
        day = last_run.date()
        while True:
            candidate = datetime.combine(day, self.at)
            if candidate > last_run and self.runs_on(day):
                return candidate
            day += timedelta(days=1)

    def is_due(self, last_run: datetime | None, now: datetime) -> bool:
        if last_run is not None and last_run.date() == now.date():
            return False
        after = last_run or now - timedelta(days=self.period_days)
        return self.next_run_time(after) <= now

    def run(self, now: datetime) -> dict:
        return self.action(now)

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


class DailyJob(Job):
    pass


class IntervalJob(Job):
    """Runs ``every_days`` calendar days after its last run, month ends included."""

    def __init__(self, name, action, every_days: int, hour: int = 0, minute: int = 0):
        super().__init__(name, action, hour, minute)
        self.every_days = every_days
        self.period_days = every_days

    def next_run_time(self, last_run: datetime) -> datetime:
        return datetime.combine(last_run.date() + timedelta(days=self.every_days), self.at)


class WeeklyJob(Job):
    period_days = 7

    def __init__(self, name, action, weekday: int, hour: int = 0, minute: int = 0):
        super().__init__(name, action, hour, minute)
        self.weekday = weekday

    def runs_on(self, day: date) -> bool:
        return day.weekday() == self.weekday


def default_jobs(db_path: str, client, rng=None) -> list[Job]:
    return [
        IntervalJob("token_decay", lambda now: run_token_decay(db_path, now), every_days=3),
        DailyJob("tolerance_check", lambda now: run_tolerance_check(db_path, now), hour=1),
        WeeklyJob("weekly_plans", lambda now: run_weekly_plans(db_path, client, now), weekday=MONDAY, hour=6),
        WeeklyJob(
            "sunday_revision", lambda now: run_revision_plans(db_path, client, now, rng),
            weekday=SUNDAY, hour=6,
        ),
    ]


class Scheduler:
    def __init__(self, db_path: str, jobs: list[Job]):
        self.db_path = db_path
        self.jobs = jobs

    def _key(self, job: Job) -> str:
        return f"job:{job.name}:last_run"

    def last_run(self, job: Job) -> datetime | None:
        value = get_setting(self.db_path, self._key(job))
        return datetime.fromisoformat(value) if value else None

    def due_jobs(self, now: datetime) -> list[Job]:
        return [job for job in self.jobs if job.is_due(self.last_run(job), now)]

    def run_pending(self, now: datetime | None = None) -> dict:
        """Run every due job. A failing job is logged and retried on the next tick."""
        now = now or datetime.now()
        results = {}
        for job in self.due_jobs(now):
            try:
                results[job.name] = job.run(now)
            except Exception as e:
                logger.exception("Job %s failed", job.name)
                results[job.name] = {"error": str(e)}
                continue
            set_setting(self.db_path, self._key(job), now.isoformat())
            logger.info("Job %s done: %s", job.name, results[job.name])
        return results

    def run_job(self, name: str, now: datetime | None = None) -> dict:
        """Run one job by name regardless of its calendar."""
        now = now or datetime.now()
        job = next((j for j in self.jobs if j.name == name), None)
        if job is None:
            raise NotFoundError(f"Unknown job: {name}")
        result = job.run(now)
        set_setting(self.db_path, self._key(job), now.isoformat())
        return result
