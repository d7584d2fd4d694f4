# tests/test_revision.py
import random

from focus_engine.courses import create_course
from focus_engine.db import get_connection, init_db
from focus_engine.revision import (
    advance_rotation, due_revision_course, revision_weights, select_revision_topics,
)
from focus_engine.users import create_user, enroll


def test_weights_favour_recent_topics():
    weights = revision_weights(5)
    assert weights[0] == 1
    assert weights == sorted(weights)
    assert weights[-1] < 4


def test_few_topics_are_all_revised():
    assert select_revision_topics(["a", "b", "c"]) == ["a", "b", "c"]
    assert select_revision_topics(["a", "b", "c", "d"]) == ["a", "b", "c", "d"]


def test_picks_at_most_four():
    topics = [f"ch{i}" for i in range(10)]
    picked = select_revision_topics(topics, rng=random.Random(3))
    assert len(picked) == 4
    assert len(set(picked)) == 4


def test_rotation_cycles_through_enrolled_courses(tmp_db):
    init_db(tmp_db)
    first = create_course(tmp_db, "Algebra")
    second = create_course(tmp_db, "Physics")
    user = create_user(tmp_db, "Alice")
    enroll(tmp_db, user, first)
    enroll(tmp_db, user, second)
    conn = get_connection(tmp_db)
    assert due_revision_course(conn, user) == first
    assert advance_rotation(conn, user) == first
    assert due_revision_course(conn, user) == second
    assert advance_rotation(conn, user) == second
    assert advance_rotation(conn, user) == first
    conn.close()


# --- Edge case tests ---

def test_no_enrollments(tmp_db):
    init_db(tmp_db)
    user = create_user(tmp_db, "Alice")
    conn = get_connection(tmp_db)
    assert due_revision_course(conn, user) is None
    assert advance_rotation(conn, user) is None
    conn.close()
