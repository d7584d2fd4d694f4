"""Periodic token decay for aging tasks.

Every run shrinks each eligible task by one step of 20%. A run advances a
task by exactly one step no matter how long ago the previous run was, so the
job must be scheduled every ``DECAY_INTERVAL_DAYS`` days.
"""
import logging
from datetime import datetime, timedelta

from focus_engine.db import get_connection, transaction
from focus_engine.economics import round_half_up

logger = logging.getLogger(__name__)

DECAY_INTERVAL_DAYS = 3
DECAY_RATE = 0.20
STAKE_FLOOR = 1

TERMINAL_STATUSES = ("completed", "expired", "superseded")


def decay_step(stake: int) -> int:
    """One decay step. Above the floor a step always removes at least one token."""
    if stake <= STAKE_FLOOR:
        return STAKE_FLOOR
    return max(STAKE_FLOOR, min(stake - 1, round_half_up(stake * (1 - DECAY_RATE))))


def eligible_task_ids(conn, now: datetime) -> list[int]:
    cutoff = (now - timedelta(days=DECAY_INTERVAL_DAYS)).isoformat()
    placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
    rows = conn.execute(
        f"""SELECT id FROM tasks
        WHERE deadline > ? AND created_at < ? AND token_stake > ?
        AND status NOT IN ({placeholders})
        ORDER BY id""",
        (now.isoformat(), cutoff, STAKE_FLOOR, *TERMINAL_STATUSES),
    ).fetchall()
    return [r["id"] for r in rows]


def run_token_decay(db_path: str, now: datetime | None = None) -> dict:
    """Apply one decay step to every eligible task. Returns a summary."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    task_ids = eligible_task_ids(conn, now)
    conn.close()

    decayed = 0
    tokens_removed = 0
    with transaction(db_path) as conn:
        for task_id in task_ids:
            stake = conn.execute(
                "SELECT token_stake FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()["token_stake"]
            new_stake = decay_step(stake)
            if new_stake == stake:
                continue
            updated = conn.execute(
                "UPDATE tasks SET token_stake = ?, reward = ? WHERE id = ? AND token_stake = ?",
                (new_stake, new_stake, task_id, stake),
            ).rowcount
            if updated:
                decayed += 1
                tokens_removed += stake - new_stake
    logger.info(
        "Token decay: %d of %d eligible tasks decayed, %d tokens removed",
        decayed, len(task_ids), tokens_removed,
    )
    return {"eligible": len(task_ids), "decayed": decayed, "tokens_removed": tokens_removed}
