"""Absence tolerance and token bleed.

Each user gets a grace period that grows with their best-ever streak:

    cap(s) = floor(2 + ln(1 + s) * 3)

s = 0 gives 2 days, s = 7 gives 8, s = 30 gives 12. Once a user has been
absent longer than their cap, tokens bleed at an accelerating rate:

    bleed(d) = ceil(2 * d ** 1.5)     where d = days past the cap

The daily check applies at most one bleed per user per calendar day and never
takes more than the user's balance.
"""
import logging
import math
from datetime import date, datetime, timedelta

from focus_engine.db import get_connection, transaction
from focus_engine.ledger import post_entry
from focus_engine.models import Streak, User
from focus_engine.reputation import recalculate_reputation

logger = logging.getLogger(__name__)

BASE_TOLERANCE = 2
LN_SCALE = 3
BLEED_ALPHA = 2
BLEED_EXPONENT = 1.5


def _as_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


def compute_tolerance_cap(longest_streak: int) -> int:
    s = max(0, longest_streak or 0)
    return math.floor(BASE_TOLERANCE + math.log(1 + s) * LN_SCALE)


def compute_bleed(days_over: int) -> int:
    if days_over <= 0:
        return 0
    return math.ceil(BLEED_ALPHA * days_over ** BLEED_EXPONENT)


def days_absent(last_active, now) -> int:
    last_day = _as_date(last_active)
    if last_day is None:
        return 0
    return max(0, (_as_date(now) - last_day).days)


def tolerance_status(user: User, now=None) -> dict:
    """Read-only snapshot of a user's grace period and bleed rates."""
    now = now or datetime.now()
    cap = compute_tolerance_cap(user.streak.longest_streak)
    absent = days_absent(user.streak.last_active_date, now)
    remaining = max(0, cap - absent)
    days_over = max(0, absent - cap)
    return {
        "tolerance_cap": cap,
        "tolerance_remaining": remaining,
        "days_absent": absent,
        "days_until_bleed": remaining,
        "current_bleed_rate": compute_bleed(days_over),
        "next_bleed_rate": compute_bleed(days_over + 1),
        "total_bled": user.tolerance.tokens_lost_to_decay,
        "streak_bonus": cap - BASE_TOLERANCE,
    }


def update_streak(streak: Streak, today) -> Streak:
    """Return the streak after activity on ``today``.

    Activity on the same day changes nothing, the next day extends the
    streak, and any longer gap restarts it at 1. The longest streak never
    goes down.
    """
    today = _as_date(today)
    last_day = _as_date(streak.last_active_date)
    if last_day == today:
        return streak
    if last_day is not None and today - last_day == timedelta(days=1):
        current = streak.current_days + 1
    else:
        current = 1
    return Streak(
        current_days=current,
        longest_streak=max(streak.longest_streak, current),
        last_active_date=today.isoformat(),
    )


def apply_tolerance_penalty(db_path: str, user_id: int, now=None) -> int:
    """Bleed one user if they are past their grace period. Returns tokens taken."""
    now = now or datetime.now()
    today = _as_date(now).isoformat()
    with transaction(db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None or row["last_active_date"] is None:
            return 0
        cap = compute_tolerance_cap(row["longest_streak"])
        absent = days_absent(row["last_active_date"], now)
        if absent <= cap:
            return 0
        bleed = min(compute_bleed(absent - cap), row["token_balance"])
        if bleed <= 0:
            return 0
        claimed = conn.execute(
            """UPDATE users SET last_penalty_date = ?
            WHERE id = ? AND (last_penalty_date IS NULL OR last_penalty_date != ?)""",
            (today, user_id, today),
        ).rowcount
        if not claimed:
            return 0
        entry = post_entry(
            conn, user_id, "tolerance_bleed", -bleed,
            note=f"Absent {absent} days, {absent - cap} past grace",
            settlement_key=f"tolerance:{user_id}:{today}",
            now=now,
        )
        if entry is None:
            return 0
        taken = -entry.amount
        conn.execute(
            """UPDATE users SET tokens_lost = tokens_lost + ?,
            tokens_lost_to_decay = tokens_lost_to_decay + ? WHERE id = ?""",
            (taken, taken, user_id),
        )
        recalculate_reputation(conn, user_id)
    logger.info("User %d bled %d tokens (%d days absent, cap %d)", user_id, taken, absent, cap)
    return taken


def run_tolerance_check(db_path: str, now=None) -> dict:
    """Daily pass over every user who has been active at least once."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    user_ids = [
        r["id"] for r in conn.execute(
            "SELECT id FROM users WHERE last_active_date IS NOT NULL AND token_balance > 0"
        ).fetchall()
    ]
    conn.close()

    penalised = 0
    total_bled = 0
    for user_id in user_ids:
        taken = apply_tolerance_penalty(db_path, user_id, now)
        if taken:
            penalised += 1
            total_bled += taken
    logger.info(
        "Tolerance check: %d users processed, %d penalised, %d tokens bled",
        len(user_ids), penalised, total_bled,
    )
    return {"processed": len(user_ids), "penalised": penalised, "total_bled": total_bled}
