"""Task plan generation.

Three kinds of plan end up as task rows:

- announcement plans: a dated event with topics, spread over three passes
  and priced by urgency against the event date;
- weekly chapter plans: Monday to Saturday tasks for a course's next
  chapter, for courses with no recent announcements;
- revision plans: personal Sunday tasks over chapters already covered,
  picked by spaced repetition from one course per user in rotation.

A new plan supersedes older pending tasks on the dates it covers, except
tasks somebody is in the middle of a quiz on.
"""
import logging
import random
import sqlite3
from datetime import date, datetime, timedelta

from focus_engine.content import parse_json
from focus_engine.courses import (
    has_recent_manual_announcement, insert_announcement, insert_task, load_announcement,
    load_course,
)
from focus_engine.db import get_connection, transaction
from focus_engine.economics import (
    MAX_DURATION_HOURS, calculate_urgency, calculate_token_economics, default_duration,
    price_task_without_urgency, task_count_for_event,
)
from focus_engine.errors import ContentGenerationError
from focus_engine.models import Task
from focus_engine.revision import advance_rotation, due_revision_course, select_revision_topics
from focus_engine.schedule import build_schedule
from focus_engine.schemas import validate_task_plans
from focus_engine.states import AttemptStatus, TaskStatus

logger = logging.getLogger(__name__)

PASS_LABELS = {1: "LEARN", 2: "REVISE-1", 3: "REVISE-2"}
PASS_DIFFICULTY = {1: "easy", 2: "medium", 3: "hard"}
WEEKDAY_DIFFICULTY = ["easy", "easy", "medium", "medium", "hard", "hard"]
FALLBACK_QUIET_DAYS = 30
REVISION_MAX_HOURS = 3

ANNOUNCEMENT_PROMPT = """Generate a day-by-day study plan for an upcoming {event_type}.

Course: {course} (credits: {credits}/10)
Topics: {topics}
Aim for about {task_count} tasks per topic in total.

Schedule (one entry per slot):
{schedule}

Rules:
- LEARN slots: 2 tasks (one reading/theory, one practice)
- REVISE-1 slots: 1-2 application tasks, medium-hard
- REVISE-2 slots: 1-2 exam-style tasks, hard
- Each task at most {max_hours} hours

Output ONLY a JSON array of tasks:
[{{"dayIndex": 0, "title": "", "description": "", "topic": "", "type": "reading|writing|coding|quiz|project", "difficulty": "easy|medium|hard", "durationHours": 0}}]"""

WEEKLY_PROMPT = """Generate a 6-day plan (Monday to Saturday) that covers one textbook chapter.

Course: {course} (credits: {credits}/10)
Chapter {number}: "{title}"

Rules:
- Exactly one task per day, dayIndex 0-5
- Days 0-1 reading and fundamentals, days 2-3 practice, days 4-5 advanced synthesis
- Each task at most {max_hours} hours

Output ONLY a JSON array:
[{{"dayIndex": 0, "title": "", "description": "", "topic": "", "type": "reading", "difficulty": "easy", "durationHours": 0}}]"""

REVISION_PROMPT = """It is revision day. Generate spaced-repetition tasks that test retention.

Course: {course} (credits: {credits}/10)
Chapters studied so far: {covered}
Chapters to revise today:
{chapters}

Rules:
- {count_rule}
- Recall and application, not new material; cross-chapter links are good
- Each task at most {max_hours} hours
- Prefix every title with "[REVISION]"

Output ONLY a JSON array:
[{{"title": "[REVISION] ...", "description": "", "topic": "", "type": "reading", "difficulty": "easy", "durationHours": 0, "chapterNumber": 0}}]"""


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


def revision_title(title: str, pass_number: int) -> str:
    if pass_number <= 1 or title.startswith("[REVISION"):
        return title
    return f"[REVISION {pass_number - 1}] {title}"


def supersede_overlapping(
    conn: sqlite3.Connection, course_id: int, dates: list[str], keep_ids: list[int],
    announcement_id: int, sources: tuple[str, ...],
) -> int:
    """Mark older pending tasks on ``dates`` as superseded by ``announcement_id``.

    Tasks with an in-progress quiz attempt are left alone.
    """
    if not dates:
        return 0
    date_marks = ", ".join("?" for _ in dates)
    source_marks = ", ".join("?" for _ in sources)
    keep_marks = ", ".join("?" for _ in keep_ids) or "NULL"
    rows = conn.execute(
        f"""SELECT id FROM tasks t
        WHERE course_id = ? AND status = ? AND scheduled_date IN ({date_marks})
        AND source IN ({source_marks}) AND id NOT IN ({keep_marks})
        AND NOT EXISTS (
            SELECT 1 FROM quiz_attempts qa WHERE qa.task_id = t.id AND qa.status = ?
        )""",
        (course_id, TaskStatus.PENDING.value, *dates, *sources, *keep_ids,
         AttemptStatus.MCQ_IN_PROGRESS.value),
    ).fetchall()
    superseded = 0
    for row in rows:
        superseded += conn.execute(
            "UPDATE tasks SET status = ?, superseded_by = ? WHERE id = ? AND status = ?",
            (TaskStatus.SUPERSEDED.value, announcement_id, row["id"], TaskStatus.PENDING.value),
        ).rowcount
    if superseded:
        logger.info("Superseded %d older tasks in course %d", superseded, course_id)
    return superseded


def generate_announcement_plan(db_path: str, announcement_id: int, client, now: datetime | None = None) -> list[int]:
    """Build, price and store the three-pass plan for an announcement."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    try:
        announcement = load_announcement(conn, announcement_id)
        course = load_course(conn, announcement.course_id)
    finally:
        conn.close()

    slots = build_schedule(announcement.topics, now, announcement.event_date)
    schedule_lines = "\n".join(
        f"  Slot {i} ({slot.date.isoformat()}): {PASS_LABELS[slot.pass_number]} - {slot.topic}"
        for i, slot in enumerate(slots)
    )
    prompt = ANNOUNCEMENT_PROMPT.format(
        event_type=announcement.event_type.upper(), course=course.title, credits=course.credit_weight,
        topics=", ".join(announcement.topics), task_count=task_count_for_event(announcement.event_type),
        schedule=schedule_lines, max_hours=MAX_DURATION_HOURS,
    )
    plans = validate_task_plans(parse_json(client.generate(prompt)), total_days=len(slots))

    tasks = []
    for plan in plans:
        slot = slots[plan.day_index]
        urgency = calculate_urgency(announcement.event_date, slot.date)
        difficulty = plan.difficulty or PASS_DIFFICULTY[slot.pass_number]
        prices = calculate_token_economics(difficulty, course.credit_weight, urgency.multiplier)
        tasks.append(Task(
            title=revision_title(plan.title, slot.pass_number),
            description=plan.description,
            topic=plan.topic or slot.topic,
            type=plan.type,
            difficulty=difficulty,
            token_stake=prices["token_stake"],
            reward=prices["reward"],
            duration_hours=min(plan.duration_hours or default_duration(difficulty), MAX_DURATION_HOURS),
            scheduled_date=slot.date.isoformat(),
            deadline=announcement.event_date,
            course_id=course.id,
            announcement_id=announcement.id,
            pass_number=slot.pass_number,
            day_index=slot.day_index,
            urgency_multiplier=urgency.multiplier,
            urgency_label=urgency.label,
            source="announcement",
            created_at=now.isoformat(),
        ))

    with transaction(db_path) as conn:
        task_ids = [insert_task(conn, task) for task in tasks]
        dates = sorted({task.scheduled_date for task in tasks})
        supersede_overlapping(
            conn, course.id, dates, task_ids, announcement.id,
            ("announcement", "fallback", "sunday_revision"),
        )
    logger.info(
        "Announcement %d: %d tasks over %d slots for %d topics",
        announcement.id, len(task_ids), len(slots), len(announcement.topics),
    )
    return task_ids


def week_bounds(now) -> tuple[date, date]:
    """Monday and Sunday of the week containing ``now``."""
    today = _as_date(now)
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


def generate_weekly_chapter_plan(db_path: str, course_id: int, client, now: datetime | None = None) -> list[int]:
    """Monday to Saturday tasks for the course's next chapter.

    Skipped (returns []) for courses without chapters or with a
    non-automatic announcement in the last 30 days.
    """
    now = now or datetime.now()
    conn = get_connection(db_path)
    try:
        course = load_course(conn, course_id)
        since = (now - timedelta(days=FALLBACK_QUIET_DAYS)).isoformat()
        recent = has_recent_manual_announcement(conn, course_id, since)
    finally:
        conn.close()
    if not course.chapters:
        logger.info("%s: no chapters, skipping weekly plan", course.title)
        return []
    if recent:
        logger.info("%s: recent announcement, skipping weekly plan", course.title)
        return []

    index = course.current_chapter_index
    if index >= len(course.chapters):
        logger.info("%s: all chapters covered, restarting from chapter 1", course.title)
        index = 0
    chapter = course.chapters[index]

    prompt = WEEKLY_PROMPT.format(
        course=course.title, credits=course.credit_weight, number=chapter.number,
        title=chapter.title, max_hours=MAX_DURATION_HOURS,
    )
    plans = validate_task_plans(parse_json(client.generate(prompt)), total_days=len(WEEKDAY_DIFFICULTY))

    monday, sunday = week_bounds(now)
    tasks = []
    for plan in plans:
        difficulty = WEEKDAY_DIFFICULTY[plan.day_index]
        prices = price_task_without_urgency(difficulty, course.credit_weight)
        tasks.append(Task(
            title=plan.title,
            description=plan.description,
            topic=plan.topic or chapter.title,
            type=plan.type,
            difficulty=difficulty,
            token_stake=prices["token_stake"],
            reward=prices["reward"],
            duration_hours=min(plan.duration_hours, MAX_DURATION_HOURS),
            scheduled_date=(monday + timedelta(days=plan.day_index)).isoformat(),
            deadline=sunday.isoformat(),
            course_id=course.id,
            day_index=plan.day_index,
            source="fallback",
            chapter_number=chapter.number,
            created_at=now.isoformat(),
        ))

    with transaction(db_path) as conn:
        announcement_id = insert_announcement(
            conn, course.id, "lecture", f"Weekly Study: Ch.{chapter.number} {chapter.title}",
            [chapter.title], sunday.isoformat(), auto_generated=True, now=now,
        )
        for task in tasks:
            task.announcement_id = announcement_id
        task_ids = [insert_task(conn, task) for task in tasks]
        week = [(monday + timedelta(days=d)).isoformat() for d in range(7)]
        supersede_overlapping(conn, course.id, week, task_ids, announcement_id, ("fallback", "sunday_revision"))
        conn.execute(
            "UPDATE courses SET current_chapter_index = ?, last_fallback_date = ? WHERE id = ?",
            (min(index + 1, len(course.chapters)), now.isoformat(), course.id),
        )
    logger.info("%s: %d weekly tasks for chapter %d", course.title, len(task_ids), chapter.number)
    return task_ids


def generate_revision_plan(
    db_path: str, user_id: int, client, now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[int]:
    """Personal revision tasks for the course next in the user's rotation."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    try:
        course_id = due_revision_course(conn, user_id)
        course = load_course(conn, course_id) if course_id is not None else None
    finally:
        conn.close()
    if course is None:
        return []

    covered = course.chapters[:min(course.current_chapter_index, len(course.chapters))]
    if not covered:
        logger.info("User %d: nothing covered yet in %s, skipping revision", user_id, course.title)
        with transaction(db_path) as conn:
            advance_rotation(conn, user_id)
        return []
    chosen = select_revision_topics(covered, rng=rng)
    full_revision = len(chosen) == len(covered)

    prompt = REVISION_PROMPT.format(
        course=course.title, credits=course.credit_weight, covered=len(covered),
        chapters="\n".join(f"  Ch.{c.number}: {c.title}" for c in chosen),
        count_rule="One task per chapter" if full_revision else "3-4 tasks in total",
        max_hours=REVISION_MAX_HOURS,
    )
    plans = validate_task_plans(parse_json(client.generate(prompt)), total_days=1)

    today = _as_date(now).isoformat()
    chosen_numbers = {c.number for c in chosen}
    tasks = []
    for plan in plans:
        difficulty = plan.difficulty or "medium"
        prices = price_task_without_urgency(difficulty, course.credit_weight)
        title = plan.title if plan.title.startswith("[REVISION]") else f"[REVISION] {plan.title}"
        tasks.append(Task(
            title=title,
            description=plan.description,
            topic=plan.topic or chosen[0].title,
            type=plan.type,
            difficulty=difficulty,
            token_stake=prices["token_stake"],
            reward=prices["reward"],
            duration_hours=min(plan.duration_hours, REVISION_MAX_HOURS),
            scheduled_date=today,
            deadline=today,
            course_id=course.id,
            pass_number=2,
            source="sunday_revision",
            chapter_number=plan.chapter_number if plan.chapter_number in chosen_numbers else None,
            assigned_to=user_id,
            created_at=now.isoformat(),
        ))

    with transaction(db_path) as conn:
        announcement_id = insert_announcement(
            conn, course.id, "lecture",
            "Sunday Revision: " + ", ".join(f"Ch.{c.number}" for c in chosen),
            [c.title for c in chosen], today, auto_generated=True, now=now,
        )
        for task in tasks:
            task.announcement_id = announcement_id
        task_ids = [insert_task(conn, task) for task in tasks]
        advance_rotation(conn, user_id)
    logger.info("User %d: %d revision tasks for %s", user_id, len(task_ids), course.title)
    return task_ids


def run_weekly_plans(db_path: str, client, now: datetime | None = None) -> dict:
    """Weekly chapter plans for every course. One course failing does not stop the rest."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    course_ids = [r["id"] for r in conn.execute("SELECT id FROM courses ORDER BY id").fetchall()]
    conn.close()
    created, failed = 0, 0
    for course_id in course_ids:
        try:
            created += len(generate_weekly_chapter_plan(db_path, course_id, client, now))
        except ContentGenerationError as e:
            failed += 1
            logger.error("Weekly plan for course %d failed: %s", course_id, e)
    return {"courses": len(course_ids), "tasks_created": created, "failed": failed}


def run_revision_plans(db_path: str, client, now: datetime | None = None,
                       rng: random.Random | None = None) -> dict:
    """Revision plans for every user with at least one enrollment."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    user_ids = [
        r["user_id"] for r in conn.execute(
            "SELECT DISTINCT user_id FROM enrollments ORDER BY user_id"
        ).fetchall()
    ]
    conn.close()
    created, failed = 0, 0
    for user_id in user_ids:
        try:
            created += len(generate_revision_plan(db_path, user_id, client, now, rng))
        except ContentGenerationError as e:
            failed += 1
            logger.error("Revision plan for user %d failed: %s", user_id, e)
    return {"users": len(user_ids), "tasks_created": created, "failed": failed}
