"""Seed the database with demo courses, users and an upcoming announcement."""
import json
from datetime import datetime, timedelta
from pathlib import Path

from focus_engine.courses import create_announcement, create_course
from focus_engine.db import get_connection
from focus_engine.users import create_user, enroll

DATA_DIR = Path(__file__).parent / "data"


def is_seeded(db_path: str) -> bool:
    """Check whether the database already has courses."""
    conn = get_connection(db_path)
    count = conn.execute("SELECT COUNT(*) FROM courses").fetchone()[0]
    conn.close()
    return count > 0


def load_demo_data() -> dict:
    return json.loads((DATA_DIR / "demo.json").read_text())


def seed_courses(db_path: str, data: dict) -> dict[str, int]:
    """Insert courses with their chapters. Returns course ids keyed by code."""
    return {
        c["code"]: create_course(db_path, c["title"], c["code"], c["credit_weight"], c["chapters"])
        for c in data["courses"]
    }


def seed_users(db_path: str, data: dict, course_ids: dict[str, int], now: datetime) -> dict[str, int]:
    user_ids = {}
    for u in data["users"]:
        user_id = create_user(db_path, u["name"], now)
        for code in u["courses"]:
            enroll(db_path, user_id, course_ids[code])
        user_ids[u["name"]] = user_id
    return user_ids


def seed_announcements(db_path: str, data: dict, course_ids: dict[str, int], now: datetime) -> list[int]:
    # Stored without a plan; generating one needs the content service.
    return [
        create_announcement(
            db_path, course_ids[a["course"]], a["event_type"], a["title"], a["topics"],
            (now + timedelta(days=a["days_until"])).date().isoformat(), now=now,
        )
        for a in data["announcements"]
    ]


def seed_all(db_path: str, now: datetime | None = None) -> None:
    """Run all seed functions in order."""
    if is_seeded(db_path):
        return
    now = now or datetime.now()
    data = load_demo_data()
    course_ids = seed_courses(db_path, data)
    seed_users(db_path, data, course_ids, now)
    seed_announcements(db_path, data, course_ids, now)
