"""Peer review of submitted theory work, with wagers and dispute resolution.

Reviewers stake a wager to vote on another user's submitted attempt. The wager
is paid when the vote is cast. Settlement by outcome:

    upvote                             reviewee 0              reviewer -wager
    downvote, reviewee agrees          reviewee -task stake    reviewer +2 wager
    downvote, arbiter backs the voter  reviewee -task stake    reviewer +2 wager
    downvote, arbiter backs reviewee   reviewee 0, defended    reviewer 0

Disagreements go to an external arbiter whose verdict is applied as given.
"""
import json
import logging
import sqlite3
from datetime import datetime

from focus_engine.courses import load_course, load_task
from focus_engine.db import get_connection, transaction
from focus_engine.errors import ConflictError, InsufficientTokensError, NotFoundError, ValidationError
from focus_engine.ledger import current_balance, post_entry
from focus_engine.models import AiVerdict
from focus_engine.reputation import bump_proficiency, recalculate_reputation
from focus_engine.states import AttemptStatus, DisputeStatus, transition

logger = logging.getLogger(__name__)

REVIEW_TYPES = ("upvote", "downvote")
MIN_REASON_LENGTH = 10

VERDICT_OUTCOMES = {
    "downvoter_correct": DisputeStatus.RESOLVED_DOWNVOTER_WINS,
    "reviewee_correct": DisputeStatus.RESOLVED_REVIEWEE_WINS,
}


def _load_review(conn: sqlite3.Connection, review_id: int):
    row = conn.execute("SELECT * FROM peer_reviews WHERE id = ?", (review_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Review {review_id} not found")
    return row


def get_review(db_path: str, review_id: int) -> dict:
    conn = get_connection(db_path)
    try:
        return dict(_load_review(conn, review_id))
    finally:
        conn.close()


def list_pending_downvotes(db_path: str, reviewee_id: int) -> list[dict]:
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT * FROM peer_reviews WHERE reviewee_id = ? AND dispute_status = ? ORDER BY id",
        (reviewee_id, DisputeStatus.PENDING_RESPONSE.value),
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def cast_review(
    db_path: str, reviewer_id: int, reviewee_id: int, task_id: int, review_type: str,
    wager: int, reason: str = "", now: datetime | None = None,
) -> int:
    """Pay the wager and record a vote on the reviewee's submitted attempt."""
    if review_type not in REVIEW_TYPES:
        raise ValidationError(f"Unknown review type: {review_type}")
    if wager < 1:
        raise ValidationError("Wager must be at least 1 token")
    if reviewer_id == reviewee_id:
        raise ValidationError("Cannot review your own submission")
    reason = (reason or "").strip()
    if review_type == "downvote" and len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(f"Downvote reason must be at least {MIN_REASON_LENGTH} characters")
    now = now or datetime.now()

    try:
        with transaction(db_path) as conn:
            task = load_task(conn, task_id)
            attempt = conn.execute(
                """SELECT id FROM quiz_attempts WHERE user_id = ? AND task_id = ? AND status = ?
                ORDER BY attempt_number DESC LIMIT 1""",
                (reviewee_id, task_id, AttemptStatus.SUBMITTED.value),
            ).fetchone()
            if attempt is None:
                raise NotFoundError(f"User {reviewee_id} has no submitted solution for task {task_id}")
            balance = current_balance(conn, reviewer_id)
            if balance < wager:
                raise InsufficientTokensError(wager, balance)

            status = DisputeStatus.NONE if review_type == "upvote" else DisputeStatus.PENDING_RESPONSE
            cur = conn.execute(
                """INSERT INTO peer_reviews
                (reviewer_id, reviewee_id, task_id, quiz_attempt_id, course_id, type, wager,
                 reason, dispute_status, settled, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (reviewer_id, reviewee_id, task_id, attempt["id"], task.course_id, review_type,
                 wager, reason, status.value, int(review_type == "upvote"), now.isoformat()),
            )
            review_id = cur.lastrowid
            post_entry(
                conn, reviewer_id, "peer_wager", -wager, task_id=task_id, clamp=False,
                note=f"{review_type.capitalize()} wager of {wager} on: {task.title}",
                settlement_key=f"wager:{review_id}", now=now,
            )
            conn.execute(
                "UPDATE users SET reviews_given = reviews_given + 1 WHERE id = ?", (reviewer_id,)
            )
            counter = "upvotes_received" if review_type == "upvote" else "downvotes_received"
            conn.execute(f"UPDATE users SET {counter} = {counter} + 1 WHERE id = ?", (reviewee_id,))
            bump_proficiency(conn, reviewee_id, task.course_id, **{counter: 1})
            recalculate_reputation(conn, reviewer_id)
            recalculate_reputation(conn, reviewee_id)
    except sqlite3.IntegrityError as e:
        raise ConflictError(f"User {reviewer_id} has already reviewed task {task_id}") from e

    logger.info("User %d cast %s (wager %d) on user %d, task %d", reviewer_id, review_type, wager, reviewee_id, task_id)
    return review_id


def respond_to_downvote(
    db_path: str, review_id: int, reviewee_id: int, action: str, arbiter=None,
    now: datetime | None = None,
) -> dict:
    """Reviewee accepts (``agree``) or contests (``disagree``) a downvote.

    A contested downvote moves to ai_reviewing. When an arbiter is given it is
    asked for a verdict straight away; otherwise call ``resolve_dispute`` later.
    """
    if action not in ("agree", "disagree"):
        raise ValidationError(f"Unknown response: {action}")
    now = now or datetime.now()
    with transaction(db_path) as conn:
        review = _load_review(conn, review_id)
        if review["reviewee_id"] != reviewee_id:
            raise ConflictError("Only the reviewee can respond to a downvote")
        current = DisputeStatus(review["dispute_status"])
        if action == "agree":
            target = transition(current, DisputeStatus.AGREED)
        else:
            transition(current, DisputeStatus.DISPUTED)
            target = transition(DisputeStatus.DISPUTED, DisputeStatus.AI_REVIEWING)
        updated = conn.execute(
            "UPDATE peer_reviews SET dispute_status = ? WHERE id = ? AND dispute_status = ?",
            (target.value, review_id, current.value),
        ).rowcount
        if not updated:
            raise ConflictError(f"Review {review_id} changed while responding")
        if action == "agree":
            _settle(conn, review_id, downvoter_wins=True, now=now)

    if action == "disagree" and arbiter is not None:
        return resolve_dispute(db_path, review_id, arbiter, now)
    return get_review(db_path, review_id)


def resolve_dispute(db_path: str, review_id: int, arbiter, now: datetime | None = None) -> dict:
    """Ask the arbiter about a review in ai_reviewing and settle on its verdict.

    Arbiter failures propagate and leave the review in ai_reviewing so the
    call can be repeated. A review that is already resolved is returned as is.
    """
    now = now or datetime.now()
    conn = get_connection(db_path)
    try:
        review = _load_review(conn, review_id)
        status = DisputeStatus(review["dispute_status"])
        if status in (DisputeStatus.RESOLVED_DOWNVOTER_WINS, DisputeStatus.RESOLVED_REVIEWEE_WINS):
            return dict(review)
        if status != DisputeStatus.AI_REVIEWING:
            raise ConflictError(f"Review {review_id} is {status.value}, not awaiting arbitration")
        attempt = conn.execute(
            "SELECT * FROM quiz_attempts WHERE id = ?", (review["quiz_attempt_id"],)
        ).fetchone()
        task = load_task(conn, review["task_id"])
        course = load_course(conn, task.course_id)
    finally:
        conn.close()

    verdict: AiVerdict = arbiter.arbitrate(
        theory_questions=json.loads(attempt["theory_questions"]),
        submission_ref=attempt["theory_submission_ref"] or "",
        reason=review["reason"],
        title=task.title,
        topic=task.topic,
        course=course.title,
    )
    if verdict.decision not in VERDICT_OUTCOMES:
        raise ValidationError(f"Unknown arbitration decision: {verdict.decision}")
    target = transition(DisputeStatus.AI_REVIEWING, VERDICT_OUTCOMES[verdict.decision])
    reviewed_at = (verdict.reviewed_at or now).isoformat()

    with transaction(db_path) as conn:
        updated = conn.execute(
            """UPDATE peer_reviews SET dispute_status = ?, ai_decision = ?, ai_confidence = ?,
            ai_reasoning = ?, ai_reviewed_at = ? WHERE id = ? AND dispute_status = ?""",
            (target.value, verdict.decision, verdict.confidence, verdict.reasoning, reviewed_at,
             review_id, DisputeStatus.AI_REVIEWING.value),
        ).rowcount
        if updated:
            _settle(conn, review_id, downvoter_wins=target == DisputeStatus.RESOLVED_DOWNVOTER_WINS, now=now)
    logger.info("Review %d resolved: %s (confidence %.2f)", review_id, verdict.decision, verdict.confidence)
    return get_review(db_path, review_id)


def _settle(conn: sqlite3.Connection, review_id: int, downvoter_wins: bool, now: datetime) -> None:
    """Apply a downvote's outcome once, guarded by the review's settled flag."""
    review = _load_review(conn, review_id)
    claimed = conn.execute(
        "UPDATE peer_reviews SET settled = 1 WHERE id = ? AND settled = 0", (review_id,)
    ).rowcount
    if not claimed:
        return
    reviewer_id, reviewee_id = review["reviewer_id"], review["reviewee_id"]
    task = load_task(conn, review["task_id"])

    if downvoter_wins:
        penalty = post_entry(
            conn, reviewee_id, "peer_penalty", -task.token_stake, task_id=task.id,
            note=f"Downvote upheld on: {task.title}",
            settlement_key=f"review:{review_id}:reviewee", now=now,
        )
        lost = -penalty.amount if penalty else 0
        payout = 2 * review["wager"]
        post_entry(
            conn, reviewer_id, "peer_reward", payout, task_id=task.id,
            note=f"Downvote upheld: wager of {review['wager']} returned doubled",
            settlement_key=f"review:{review_id}:reviewer", now=now,
        )
        conn.execute(
            """UPDATE users SET downvotes_lost = downvotes_lost + 1, tokens_lost = tokens_lost + ?
            WHERE id = ?""",
            (lost, reviewee_id),
        )
        conn.execute(
            "UPDATE peer_reviews SET tokens_transferred = ? WHERE id = ?", (lost, review_id)
        )
        bump_proficiency(conn, reviewee_id, review["course_id"], downvotes_lost=1)
    else:
        conn.execute(
            "UPDATE users SET downvotes_defended = downvotes_defended + 1 WHERE id = ?", (reviewee_id,)
        )
        bump_proficiency(conn, reviewee_id, review["course_id"], downvotes_defended=1)
    recalculate_reputation(conn, reviewer_id)
    recalculate_reputation(conn, reviewee_id)
