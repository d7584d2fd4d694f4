"""Reputation and course proficiency scoring.

Both scores are always recomputed from the current counters, never patched
incrementally.
"""
import sqlite3

from focus_engine.economics import round_half_up
from focus_engine.models import CourseProficiency, UserStats

PROFICIENCY_COUNTERS = (
    "upvotes_received", "downvotes_received", "downvotes_lost", "downvotes_defended",
    "tasks_completed", "tasks_attempted", "quizzes_passed", "quizzes_failed",
)


def compute_reputation(stats: UserStats) -> int:
    raw = (
        stats.upvotes_received * 10
        - stats.downvotes_lost * 15
        + stats.downvotes_defended * 5
        + stats.quizzes_passed * 3
        - stats.tokens_lost / 10
        + stats.tasks_completed * 2
    )
    return max(0, round_half_up(raw))


def compute_proficiency(prof: CourseProficiency) -> int:
    return max(
        0,
        prof.upvotes_received * 10
        - prof.downvotes_lost * 15
        + prof.downvotes_defended * 5
        + prof.tasks_completed * 3
        - prof.quizzes_failed * 2
        + prof.quizzes_passed * 5,
    )


def recalculate_reputation(conn: sqlite3.Connection, user_id: int) -> int:
    """Recompute and store a user's reputation from their stored counters."""
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    stats = UserStats(
        tasks_completed=row["tasks_completed"],
        quizzes_passed=row["quizzes_passed"],
        tokens_lost=row["tokens_lost"],
        upvotes_received=row["upvotes_received"],
        downvotes_lost=row["downvotes_lost"],
        downvotes_defended=row["downvotes_defended"],
    )
    reputation = compute_reputation(stats)
    conn.execute("UPDATE users SET reputation = ? WHERE id = ?", (reputation, user_id))
    return reputation


def bump_proficiency(conn: sqlite3.Connection, user_id: int, course_id: int, **deltas: int) -> int:
    """Add to a (user, course) proficiency row, creating it if needed, then rescore."""
    unknown = set(deltas) - set(PROFICIENCY_COUNTERS)
    if unknown:
        raise KeyError(f"Unknown proficiency counters: {sorted(unknown)}")
    conn.execute(
        "INSERT OR IGNORE INTO course_proficiency (user_id, course_id) VALUES (?, ?)",
        (user_id, course_id),
    )
    if deltas:
        assignments = ", ".join(f"{name} = {name} + ?" for name in deltas)
        conn.execute(
            f"UPDATE course_proficiency SET {assignments} WHERE user_id = ? AND course_id = ?",
            (*deltas.values(), user_id, course_id),
        )
    row = conn.execute(
        "SELECT * FROM course_proficiency WHERE user_id = ? AND course_id = ?",
        (user_id, course_id),
    ).fetchone()
    prof = CourseProficiency(
        user_id=user_id,
        course_id=course_id,
        **{name: row[name] for name in PROFICIENCY_COUNTERS},
    )
    score = compute_proficiency(prof)
    conn.execute(
        "UPDATE course_proficiency SET proficiency_score = ? WHERE user_id = ? AND course_id = ?",
        (score, user_id, course_id),
    )
    return score
