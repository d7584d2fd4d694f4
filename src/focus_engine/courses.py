"""Courses, chapters, announcements and task records."""
import json
import sqlite3
from dataclasses import asdict
from datetime import datetime

from focus_engine.db import get_connection, transaction
from focus_engine.errors import NotFoundError, ValidationError
from focus_engine.models import Announcement, Chapter, Course, Task
from focus_engine.states import TaskStatus, transition

EVENT_TYPES = ("quiz", "assignment", "lab", "lecture", "midterm", "final")
TASK_TYPES = ("reading", "writing", "coding", "quiz", "project")

_TASK_COLUMNS = [
    "course_id", "announcement_id", "title", "description", "topic", "type",
    "difficulty", "token_stake", "reward", "urgency_multiplier", "urgency_label",
    "duration_hours", "scheduled_date", "deadline", "pass_number", "day_index",
    "chapter_number", "source", "status", "assigned_to", "superseded_by", "created_at",
]


def create_course(
    db_path: str, title: str, code: str = "", credit_weight: int = 5,
    chapters: list[str] | None = None,
) -> int:
    if not 1 <= credit_weight <= 10:
        raise ValidationError(f"credit_weight must be 1-10, got {credit_weight}")
    conn = get_connection(db_path)
    cur = conn.execute(
        "INSERT INTO courses (title, code, credit_weight) VALUES (?, ?, ?)",
        (title, code, credit_weight),
    )
    course_id = cur.lastrowid
    for number, chapter_title in enumerate(chapters or [], start=1):
        conn.execute(
            "INSERT INTO chapters (course_id, number, title) VALUES (?, ?, ?)",
            (course_id, number, chapter_title),
        )
    conn.commit()
    conn.close()
    return course_id


def load_course(conn: sqlite3.Connection, course_id: int) -> Course:
    row = conn.execute("SELECT * FROM courses WHERE id = ?", (course_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Course {course_id} not found")
    chapters = conn.execute(
        "SELECT number, title FROM chapters WHERE course_id = ? ORDER BY number",
        (course_id,),
    ).fetchall()
    return Course(
        id=row["id"],
        title=row["title"],
        code=row["code"] or "",
        credit_weight=row["credit_weight"],
        chapters=[Chapter(number=c["number"], title=c["title"]) for c in chapters],
        current_chapter_index=row["current_chapter_index"],
        last_fallback_date=row["last_fallback_date"],
    )


def get_course(db_path: str, course_id: int) -> Course:
    conn = get_connection(db_path)
    try:
        return load_course(conn, course_id)
    finally:
        conn.close()


def list_courses(db_path: str) -> list[Course]:
    conn = get_connection(db_path)
    ids = [r["id"] for r in conn.execute("SELECT id FROM courses ORDER BY id").fetchall()]
    courses = [load_course(conn, course_id) for course_id in ids]
    conn.close()
    return courses


def insert_announcement(
    conn: sqlite3.Connection, course_id: int, event_type: str, title: str, topics: list[str],
    event_date: str, auto_generated: bool = False, now: datetime | None = None,
) -> int:
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"Unknown event type: {event_type}")
    if not topics:
        raise ValidationError("An announcement needs at least one topic")
    now = now or datetime.now()
    load_course(conn, course_id)
    cur = conn.execute(
        """INSERT INTO announcements
        (course_id, event_type, title, topics, event_date, auto_generated, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (course_id, event_type, title, json.dumps(topics), event_date,
         int(auto_generated), now.isoformat()),
    )
    return cur.lastrowid


def create_announcement(
    db_path: str, course_id: int, event_type: str, title: str, topics: list[str],
    event_date: str, auto_generated: bool = False, now: datetime | None = None,
) -> int:
    with transaction(db_path) as conn:
        return insert_announcement(conn, course_id, event_type, title, topics, event_date, auto_generated, now)


def load_announcement(conn: sqlite3.Connection, announcement_id: int) -> Announcement:
    row = conn.execute("SELECT * FROM announcements WHERE id = ?", (announcement_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Announcement {announcement_id} not found")
    return Announcement(
        id=row["id"],
        course_id=row["course_id"],
        event_type=row["event_type"],
        title=row["title"],
        topics=json.loads(row["topics"]),
        event_date=row["event_date"],
        auto_generated=bool(row["auto_generated"]),
        created_at=row["created_at"],
    )


def has_recent_manual_announcement(conn: sqlite3.Connection, course_id: int, since: str) -> bool:
    row = conn.execute(
        """SELECT COUNT(*) FROM announcements
        WHERE course_id = ? AND auto_generated = 0 AND created_at >= ?""",
        (course_id, since),
    ).fetchone()
    return row[0] > 0


def row_to_task(row) -> Task:
    return Task(id=row["id"], **{name: row[name] for name in _TASK_COLUMNS})


def insert_task(conn: sqlite3.Connection, task: Task) -> int:
    if task.token_stake != task.reward:
        raise ValidationError("A task's stake and reward must be equal")
    values = asdict(task)
    placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
    cur = conn.execute(
        f"INSERT INTO tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
        [values[name] for name in _TASK_COLUMNS],
    )
    return cur.lastrowid


def load_task(conn: sqlite3.Connection, task_id: int) -> Task:
    row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Task {task_id} not found")
    return row_to_task(row)


def get_task(db_path: str, task_id: int) -> Task:
    conn = get_connection(db_path)
    try:
        return load_task(conn, task_id)
    finally:
        conn.close()


def list_tasks(
    db_path: str, course_id: int | None = None, status: str | None = None,
    source: str | None = None,
) -> list[Task]:
    clauses, params = [], []
    if course_id is not None:
        clauses.append("course_id = ?")
        params.append(course_id)
    if status is not None:
        clauses.append("status = ?")
        params.append(status)
    if source is not None:
        clauses.append("source = ?")
        params.append(source)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = get_connection(db_path)
    rows = conn.execute(
        f"SELECT * FROM tasks {where} ORDER BY scheduled_date, id", params
    ).fetchall()
    conn.close()
    return [row_to_task(r) for r in rows]


def set_task_status(conn: sqlite3.Connection, task_id: int, target: TaskStatus, now: datetime | None = None) -> None:
    """Move a task to ``target``, rejecting illegal transitions."""
    task = load_task(conn, task_id)
    current = TaskStatus(task.status)
    if current == target:
        return
    transition(current, target)
    completed_at = (now or datetime.now()).isoformat() if target == TaskStatus.COMPLETED else None
    conn.execute(
        "UPDATE tasks SET status = ?, completed_at = COALESCE(?, completed_at) WHERE id = ? AND status = ?",
        (target.value, completed_at, task_id, current.value),
    )
