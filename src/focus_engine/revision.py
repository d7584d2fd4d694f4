"""Spaced-repetition topic selection and per-user course rotation."""
import math
import random
import sqlite3

from focus_engine.sampler import weighted_sample
from focus_engine.users import enrolled_course_ids

MAX_REVISION_TOPICS = 4


def revision_weights(count: int) -> list[float]:
    """Weights for topics ordered oldest to newest: about 1 for the oldest, up to 4."""
    return [1 + math.sqrt(i / count) * 3 for i in range(count)]


def select_revision_topics(
    topics: list, max_pick: int = MAX_REVISION_TOPICS, rng: random.Random | None = None,
) -> list:
    """Pick topics to revisit. With ``max_pick`` or fewer topics, revisit all of them."""
    if len(topics) <= max_pick:
        return list(topics)
    pairs = list(zip(topics, revision_weights(len(topics))))
    return weighted_sample(pairs, max_pick, rng)


def due_revision_course(conn: sqlite3.Connection, user_id: int) -> int | None:
    """The enrolled course the user's rotation points at, or None with no enrollments."""
    course_ids = enrolled_course_ids(conn, user_id)
    if not course_ids:
        return None
    row = conn.execute(
        "SELECT revision_course_index FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    return course_ids[row["revision_course_index"] % len(course_ids)]


def advance_rotation(conn: sqlite3.Connection, user_id: int) -> int | None:
    """Return the course due for revision and move the user's index on by one."""
    course_ids = enrolled_course_ids(conn, user_id)
    if not course_ids:
        return None
    row = conn.execute(
        "SELECT revision_course_index FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    index = row["revision_course_index"] % len(course_ids)
    conn.execute(
        "UPDATE users SET revision_course_index = ? WHERE id = ?",
        ((index + 1) % len(course_ids), user_id),
    )
    return course_ids[index]
