"""Timed MCQ quizzes: staking, scoring, settlement and the theory follow-up.

A quiz is 6 questions with 4 options each. Points per question:

    correct +2 | wrong -2 | unattempted or timed out -1

The attempt passes at 8 points or more. The stake is taken when the quiz
starts; a pass returns it along with an equal reward, a fail keeps it.
"""
import json
import logging
import math
import sqlite3
from datetime import datetime

from focus_engine.courses import load_course, load_task, set_task_status
from focus_engine.db import get_connection, transaction
from focus_engine.errors import ConflictError, InsufficientTokensError, NotFoundError, ValidationError
from focus_engine.ledger import current_balance, post_entry
from focus_engine.models import McqQuestion, McqResponse
from focus_engine.questions import generate_mcqs, generate_theory_questions
from focus_engine.reputation import bump_proficiency, recalculate_reputation
from focus_engine.states import AttemptStatus, TaskStatus, is_terminal, transition
from focus_engine.users import record_activity

logger = logging.getLogger(__name__)

MCQ_COUNT = 6
OPTION_COUNT = 4
POINTS = {"correct": 2, "wrong": -2, "unattempted": -1}
PASS_THRESHOLD = 8
MAX_SCORE = MCQ_COUNT * POINTS["correct"]
TIME_LIMIT_MS = 15_000
TIME_GRACE_MS = 2_000
REATTEMPT_DECAY = 0.6
# An in-progress attempt older than this can no longer score anything.
ATTEMPT_BUDGET_MS = MCQ_COUNT * (TIME_LIMIT_MS + TIME_GRACE_MS)


def effective_stake(base_stake: int, attempt_number: int) -> int:
    """Stake for the n-th attempt: max(1, ceil(base * 0.6^(n-1)))."""
    if attempt_number < 1:
        raise ValidationError(f"attempt_number must be >= 1, got {attempt_number}")
    # Round away float noise first so that e.g. 25 * 0.6**2 = 9.000000000000002 stays 9.
    return max(1, math.ceil(round(base_stake * REATTEMPT_DECAY ** (attempt_number - 1), 9)))


def question_deadline_ms(question_index: int) -> int:
    return (question_index + 1) * (TIME_LIMIT_MS + TIME_GRACE_MS)


def score_answer(mcq: McqQuestion, question_index: int, selected_answer: int | None,
                 elapsed_ms: int) -> McqResponse:
    """Score one answer given the time elapsed since the quiz started."""
    if selected_answer is None or elapsed_ms > question_deadline_ms(question_index):
        points, is_correct = POINTS["unattempted"], None
    elif selected_answer == mcq.correct_answer:
        points, is_correct = POINTS["correct"], True
    else:
        points, is_correct = POINTS["wrong"], False
    return McqResponse(
        question_index=question_index,
        selected_answer=selected_answer,
        is_correct=is_correct,
        points=points,
        time_taken_ms=elapsed_ms - question_index * TIME_LIMIT_MS,
    )


def total_score(responses: list[McqResponse]) -> int:
    """Sum of points, counting every question with no response as unattempted."""
    answered = {r.question_index: r.points for r in responses}
    return sum(answered.get(i, POINTS["unattempted"]) for i in range(MCQ_COUNT))


def is_passing(score: int) -> bool:
    return score >= PASS_THRESHOLD


def _mcqs_from_json(raw: str) -> list[McqQuestion]:
    return [McqQuestion(**m) for m in json.loads(raw)]


def _mcqs_to_json(mcqs: list[McqQuestion]) -> str:
    return json.dumps([
        {"question": m.question, "options": m.options, "correct_answer": m.correct_answer}
        for m in mcqs
    ])


def _load_attempt(conn: sqlite3.Connection, attempt_id: int):
    row = conn.execute("SELECT * FROM quiz_attempts WHERE id = ?", (attempt_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Quiz attempt {attempt_id} not found")
    return row


def _load_responses(conn: sqlite3.Connection, attempt_id: int) -> list[McqResponse]:
    rows = conn.execute(
        "SELECT * FROM mcq_responses WHERE attempt_id = ? ORDER BY question_index",
        (attempt_id,),
    ).fetchall()
    return [
        McqResponse(
            question_index=r["question_index"],
            selected_answer=r["selected_answer"],
            is_correct=None if r["is_correct"] is None else bool(r["is_correct"]),
            points=r["points"],
            time_taken_ms=r["time_taken_ms"],
        )
        for r in rows
    ]


def _elapsed_ms(started_at: str, now: datetime) -> int:
    return int((now - datetime.fromisoformat(started_at)).total_seconds() * 1000)


def _attempts_for(conn: sqlite3.Connection, user_id: int, task_id: int) -> list:
    return conn.execute(
        "SELECT * FROM quiz_attempts WHERE user_id = ? AND task_id = ? ORDER BY attempt_number DESC",
        (user_id, task_id),
    ).fetchall()


def start_quiz(db_path: str, user_id: int, task_id: int, client, now: datetime | None = None) -> dict:
    """Stake tokens and open a new attempt. Returns the questions without answers."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    try:
        task = load_task(conn, task_id)
        course = load_course(conn, task.course_id)
        if is_terminal(TaskStatus(task.status)):
            raise ConflictError(f"Task {task_id} is {task.status} and cannot be attempted")
        if task.assigned_to is not None and task.assigned_to != user_id:
            raise ConflictError(f"Task {task_id} is assigned to another user")
        attempts = _attempts_for(conn, user_id, task_id)
    finally:
        conn.close()

    latest = attempts[0] if attempts else None
    if latest is not None:
        status = AttemptStatus(latest["status"])
        if status == AttemptStatus.MCQ_IN_PROGRESS:
            if _elapsed_ms(latest["mcq_started_at"], now) <= ATTEMPT_BUDGET_MS:
                raise ConflictError("A quiz for this task is already in progress")
            logger.info("Settling abandoned attempt %d before re-attempt", latest["id"])
            settle_quiz(db_path, latest["id"], now)
            status = AttemptStatus(_reload_status(db_path, latest["id"]))
        if status in (AttemptStatus.MCQ_COMPLETED, AttemptStatus.THEORY_PENDING):
            raise ConflictError("Finish the theory part of your last attempt before re-attempting")

    attempt_number = len(attempts) + 1
    stake = effective_stake(task.token_stake, attempt_number)

    conn = get_connection(db_path)
    balance = current_balance(conn, user_id)
    conn.close()
    if balance < stake:
        raise InsufficientTokensError(stake, balance)

    # Questions are generated before any tokens move, so a generation failure costs nothing.
    mcqs = generate_mcqs(client, task.title, task.topic, course.title)

    try:
        with transaction(db_path) as conn:
            # The task may have been superseded while questions were generated.
            task = load_task(conn, task_id)
            if is_terminal(TaskStatus(task.status)):
                raise ConflictError(f"Task {task_id} is {task.status} and cannot be attempted")
            balance = current_balance(conn, user_id)
            if balance < stake:
                raise InsufficientTokensError(stake, balance)
            cur = conn.execute(
                """INSERT INTO quiz_attempts
                (user_id, task_id, course_id, attempt_number, effective_stake, mcqs,
                 mcq_started_at, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (user_id, task_id, task.course_id, attempt_number, stake, _mcqs_to_json(mcqs),
                 now.isoformat(), AttemptStatus.MCQ_IN_PROGRESS.value, now.isoformat()),
            )
            attempt_id = cur.lastrowid
            post_entry(
                conn, user_id, "stake", -stake, task_id=task_id, clamp=False,
                note=f"Staked {stake} tokens (attempt #{attempt_number}) for: {task.title}",
                settlement_key=f"stake:{attempt_id}", now=now,
            )
            if task.assigned_to == user_id and task.status == TaskStatus.PENDING.value:
                set_task_status(conn, task_id, TaskStatus.IN_PROGRESS)
    except sqlite3.IntegrityError as e:
        raise ConflictError(f"Attempt #{attempt_number} for task {task_id} already exists") from e

    logger.info("User %d started quiz on task %d (attempt #%d, stake %d)", user_id, task_id, attempt_number, stake)
    return {
        "attempt_id": attempt_id,
        "attempt_number": attempt_number,
        "effective_stake": stake,
        "original_stake": task.token_stake,
        "pass_threshold": PASS_THRESHOLD,
        "mcqs": [
            {"index": i, "question": m.question, "options": m.options, "time_limit": TIME_LIMIT_MS // 1000}
            for i, m in enumerate(mcqs)
        ],
    }


def _reload_status(db_path: str, attempt_id: int) -> str:
    conn = get_connection(db_path)
    status = _load_attempt(conn, attempt_id)["status"]
    conn.close()
    return status


def answer_question(db_path: str, attempt_id: int, question_index: int, selected_answer: int | None,
                    now: datetime | None = None) -> McqResponse:
    if not 0 <= question_index < MCQ_COUNT:
        raise ValidationError(f"question_index must be 0-{MCQ_COUNT - 1}, got {question_index}")
    if selected_answer is not None and not 0 <= selected_answer < OPTION_COUNT:
        raise ValidationError(f"selected_answer must be 0-{OPTION_COUNT - 1} or None, got {selected_answer}")
    now = now or datetime.now()
    try:
        with transaction(db_path) as conn:
            attempt = _load_attempt(conn, attempt_id)
            if attempt["status"] != AttemptStatus.MCQ_IN_PROGRESS.value:
                raise ConflictError(f"Quiz is {attempt['status']}")
            mcq = _mcqs_from_json(attempt["mcqs"])[question_index]
            response = score_answer(
                mcq, question_index, selected_answer, _elapsed_ms(attempt["mcq_started_at"], now)
            )
            conn.execute(
                """INSERT INTO mcq_responses
                (attempt_id, question_index, selected_answer, is_correct, points, time_taken_ms, answered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (attempt_id, question_index, selected_answer,
                 None if response.is_correct is None else int(response.is_correct),
                 response.points, response.time_taken_ms, now.isoformat()),
            )
    except sqlite3.IntegrityError as e:
        raise ConflictError(f"Question {question_index} already answered") from e
    return response


def settle_quiz(db_path: str, attempt_id: int, now: datetime | None = None) -> dict:
    """Score an attempt and apply its token outcome exactly once.

    Unanswered questions count as unattempted. Calling this again for a
    settled attempt changes nothing and returns the same result.
    """
    now = now or datetime.now()
    with transaction(db_path) as conn:
        attempt = _load_attempt(conn, attempt_id)
        if attempt["token_settled"]:
            return _result(conn, attempt_id)

        for i in range(MCQ_COUNT):
            conn.execute(
                """INSERT OR IGNORE INTO mcq_responses (attempt_id, question_index, points, answered_at)
                VALUES (?, ?, ?, ?)""",
                (attempt_id, i, POINTS["unattempted"], now.isoformat()),
            )
        score = total_score(_load_responses(conn, attempt_id))
        passed = is_passing(score)
        target = AttemptStatus.MCQ_COMPLETED if passed else AttemptStatus.FAILED
        transition(AttemptStatus(attempt["status"]), target)
        stake = attempt["effective_stake"]
        awarded = stake if passed else -stake

        claimed = conn.execute(
            """UPDATE quiz_attempts SET token_settled = 1, mcq_score = ?, mcq_passed = ?,
            status = ?, tokens_awarded = ? WHERE id = ? AND token_settled = 0""",
            (score, int(passed), target.value, awarded, attempt_id),
        ).rowcount
        if not claimed:
            return _result(conn, attempt_id)

        user_id, task_id = attempt["user_id"], attempt["task_id"]
        key = f"quiz:{attempt_id}"
        if passed:
            post_entry(
                conn, user_id, "reward", stake * 2, task_id=task_id, settlement_key=key, now=now,
                note=f"Quiz passed ({score}/{MAX_SCORE}, attempt #{attempt['attempt_number']}). "
                     f"Stake {stake} returned + {stake} reward.",
            )
            conn.execute(
                """UPDATE users SET quizzes_passed = quizzes_passed + 1,
                tokens_earned = tokens_earned + ? WHERE id = ?""",
                (stake, user_id),
            )
        else:
            post_entry(
                conn, user_id, "penalty", 0, task_id=task_id, settlement_key=key, now=now,
                note=f"Quiz failed ({score}/{MAX_SCORE}, attempt #{attempt['attempt_number']}). "
                     f"Stake of {stake} forfeited.",
            )
            conn.execute("UPDATE users SET tokens_lost = tokens_lost + ? WHERE id = ?", (stake, user_id))

        user = conn.execute(
            "SELECT quizzes_taken, avg_mcq_score FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        taken = user["quizzes_taken"] + 1
        average = round((user["avg_mcq_score"] * user["quizzes_taken"] + score) / taken, 2)
        conn.execute(
            "UPDATE users SET quizzes_taken = ?, avg_mcq_score = ? WHERE id = ?",
            (taken, average, user_id),
        )
        record_activity(conn, user_id, now)
        bump_proficiency(
            conn, user_id, attempt["course_id"],
            quizzes_passed=int(passed), quizzes_failed=int(not passed),
            tasks_attempted=1, tasks_completed=int(passed),
        )
        recalculate_reputation(conn, user_id)
        result = _result(conn, attempt_id)

    logger.info("Attempt %d settled: score %d, %s", attempt_id, score, "passed" if passed else "failed")
    return result


def _result(conn: sqlite3.Connection, attempt_id: int) -> dict:
    attempt = _load_attempt(conn, attempt_id)
    mcqs = _mcqs_from_json(attempt["mcqs"])
    breakdown = []
    for r in _load_responses(conn, attempt_id):
        mcq = mcqs[r.question_index]
        breakdown.append({
            "question": mcq.question,
            "your_answer": mcq.options[r.selected_answer] if r.selected_answer is not None else "Unattempted",
            "correct_answer": mcq.options[mcq.correct_answer],
            "points": r.points,
        })
    return {
        "attempt_id": attempt_id,
        "score": attempt["mcq_score"],
        "max_score": MAX_SCORE,
        "passed": None if attempt["mcq_passed"] is None else bool(attempt["mcq_passed"]),
        "threshold": PASS_THRESHOLD,
        "status": attempt["status"],
        "tokens_awarded": attempt["tokens_awarded"],
        "breakdown": breakdown,
    }


def quiz_result(db_path: str, attempt_id: int) -> dict:
    """Read-only breakdown of an attempt."""
    conn = get_connection(db_path)
    try:
        return _result(conn, attempt_id)
    finally:
        conn.close()


def attempt_info(db_path: str, user_id: int, task_id: int) -> dict:
    """Attempt history for a task and what the next attempt would cost."""
    conn = get_connection(db_path)
    try:
        task = load_task(conn, task_id)
        attempts = _attempts_for(conn, user_id, task_id)
    finally:
        conn.close()
    next_number = len(attempts) + 1
    latest = attempts[0] if attempts else None
    return {
        "total_attempts": len(attempts),
        "next_attempt_number": next_number,
        "original_stake": task.token_stake,
        "next_stake": effective_stake(task.token_stake, next_number),
        "decay_rate": REATTEMPT_DECAY,
        "can_retry": latest is None or latest["status"] in (
            AttemptStatus.FAILED.value, AttemptStatus.SUBMITTED.value,
        ),
        "latest_status": latest["status"] if latest else None,
        "history": [
            {
                "attempt_number": a["attempt_number"],
                "stake": a["effective_stake"],
                "score": a["mcq_score"],
                "passed": None if a["mcq_passed"] is None else bool(a["mcq_passed"]),
                "status": a["status"],
                "date": a["created_at"],
            }
            for a in attempts
        ],
    }


def get_theory_questions(db_path: str, attempt_id: int, client) -> list[str]:
    """Theory questions for a passed attempt, generated on first request."""
    conn = get_connection(db_path)
    try:
        attempt = _load_attempt(conn, attempt_id)
        if not attempt["mcq_passed"]:
            raise ConflictError("MCQ not passed, theory questions are unavailable")
        stored = json.loads(attempt["theory_questions"])
        if stored:
            return stored
        task = load_task(conn, attempt["task_id"])
        course = load_course(conn, task.course_id)
    finally:
        conn.close()

    questions = generate_theory_questions(client, task.title, task.topic, course.title)
    with transaction(db_path) as conn:
        attempt = _load_attempt(conn, attempt_id)
        stored = json.loads(attempt["theory_questions"])
        if stored:
            return stored
        target = transition(AttemptStatus(attempt["status"]), AttemptStatus.THEORY_PENDING)
        conn.execute(
            "UPDATE quiz_attempts SET theory_questions = ?, status = ? WHERE id = ?",
            (json.dumps(questions), target.value, attempt_id),
        )
    return questions


def submit_theory(db_path: str, attempt_id: int, submission_ref: str, now: datetime | None = None) -> None:
    """Record the written solutions. ``submission_ref`` is an opaque pointer to them."""
    if not submission_ref:
        raise ValidationError("A submission reference is required")
    now = now or datetime.now()
    with transaction(db_path) as conn:
        attempt = _load_attempt(conn, attempt_id)
        target = transition(AttemptStatus(attempt["status"]), AttemptStatus.SUBMITTED)
        updated = conn.execute(
            """UPDATE quiz_attempts SET theory_submission_ref = ?, theory_submitted_at = ?, status = ?
            WHERE id = ? AND status = ?""",
            (submission_ref, now.isoformat(), target.value, attempt_id, attempt["status"]),
        ).rowcount
        if not updated:
            raise ConflictError(f"Attempt {attempt_id} changed while submitting")
        user_id = attempt["user_id"]
        conn.execute("UPDATE users SET tasks_completed = tasks_completed + 1 WHERE id = ?", (user_id,))
        task = load_task(conn, attempt["task_id"])
        if task.assigned_to == user_id:
            set_task_status(conn, task.id, TaskStatus.COMPLETED, now)
        recalculate_reputation(conn, user_id)
