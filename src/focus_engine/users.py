"""User records, enrollments and activity tracking."""
import sqlite3
from datetime import datetime

from focus_engine.db import get_connection, transaction
from focus_engine.errors import NotFoundError
from focus_engine.ledger import post_entry
from focus_engine.models import Streak, Tolerance, User, UserStats
from focus_engine.tolerance import update_streak

STARTING_BALANCE = 100

STAT_COLUMNS = (
    "tasks_completed", "quizzes_taken", "quizzes_passed", "avg_mcq_score",
    "tokens_earned", "tokens_lost", "upvotes_received", "downvotes_received",
    "downvotes_lost", "downvotes_defended", "reviews_given",
)


def row_to_user(row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        token_balance=row["token_balance"],
        reputation=row["reputation"],
        streak=Streak(
            current_days=row["current_streak"],
            longest_streak=row["longest_streak"],
            last_active_date=row["last_active_date"],
        ),
        tolerance=Tolerance(
            last_penalty_date=row["last_penalty_date"],
            tokens_lost_to_decay=row["tokens_lost_to_decay"],
        ),
        stats=UserStats(**{name: row[name] for name in STAT_COLUMNS}),
        revision_course_index=row["revision_course_index"],
    )


def load_user(conn: sqlite3.Connection, user_id: int) -> User:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"User {user_id} not found")
    return row_to_user(row)


def create_user(db_path: str, name: str, now: datetime | None = None) -> int:
    """Create a user and credit the starting balance through the ledger."""
    now = now or datetime.now()
    with transaction(db_path) as conn:
        cur = conn.execute(
            "INSERT INTO users (name, created_at) VALUES (?, ?)",
            (name, now.isoformat()),
        )
        user_id = cur.lastrowid
        post_entry(
            conn, user_id, "initial", STARTING_BALANCE,
            note="Starting balance", settlement_key=f"initial:{user_id}", now=now,
        )
    return user_id


def get_user(db_path: str, user_id: int) -> User:
    conn = get_connection(db_path)
    try:
        return load_user(conn, user_id)
    finally:
        conn.close()


def list_users(db_path: str) -> list[User]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
    conn.close()
    return [row_to_user(r) for r in rows]


def enroll(db_path: str, user_id: int, course_id: int) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "INSERT OR IGNORE INTO enrollments (user_id, course_id) VALUES (?, ?)",
        (user_id, course_id),
    )
    conn.commit()
    conn.close()


def enrolled_course_ids(conn: sqlite3.Connection, user_id: int) -> list[int]:
    rows = conn.execute(
        "SELECT course_id FROM enrollments WHERE user_id = ? ORDER BY course_id",
        (user_id,),
    ).fetchall()
    return [r["course_id"] for r in rows]


def record_activity(conn: sqlite3.Connection, user_id: int, today) -> Streak:
    """Update the user's streak for activity on ``today`` and return it."""
    user = load_user(conn, user_id)
    streak = update_streak(user.streak, today)
    conn.execute(
        """UPDATE users SET current_streak = ?, longest_streak = ?, last_active_date = ?
        WHERE id = ?""",
        (streak.current_days, streak.longest_streak, streak.last_active_date, user_id),
    )
    return streak
