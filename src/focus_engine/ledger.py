"""Append-only token ledger.

Every balance change goes through ``post_entry``, which writes the ledger row
and the user's cached ``token_balance`` on the same connection. Callers run it
inside ``db.transaction()`` so the read of the current balance and both writes
happen under one write lock.
"""
import logging
import sqlite3
from datetime import datetime

from focus_engine.db import get_connection
from focus_engine.errors import NotFoundError, ValidationError
from focus_engine.models import LedgerEntry

logger = logging.getLogger(__name__)

ENTRY_TYPES = {
    "initial", "stake", "reward", "penalty", "bonus",
    "peer_wager", "peer_reward", "peer_penalty", "tolerance_bleed",
}


def _row_to_entry(row) -> LedgerEntry:
    return LedgerEntry(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        amount=row["amount"],
        balance_after=row["balance_after"],
        task_id=row["task_id"],
        note=row["note"] or "",
        settlement_key=row["settlement_key"],
        created_at=row["created_at"],
    )


def current_balance(conn: sqlite3.Connection, user_id: int) -> int:
    row = conn.execute("SELECT token_balance FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"User {user_id} not found")
    return row["token_balance"]


def post_entry(
    conn: sqlite3.Connection,
    user_id: int,
    entry_type: str,
    amount: int,
    *,
    task_id: int | None = None,
    note: str = "",
    settlement_key: str | None = None,
    clamp: bool = True,
    now: datetime | None = None,
) -> LedgerEntry | None:
    """Apply ``amount`` to a user's balance and append the matching ledger row.

    A debit larger than the balance is clamped to the balance when ``clamp``
    is set, so the recorded amount is what actually moved. Returns None when
    ``settlement_key`` was already used (the settlement already happened).
    """
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Unknown ledger entry type: {entry_type}")
    balance = current_balance(conn, user_id)
    if amount < 0 and balance + amount < 0:
        if not clamp:
            raise ValidationError(f"Debit of {-amount} exceeds balance {balance}")
        amount = -balance
    balance_after = balance + amount
    stamp = (now or datetime.now()).isoformat()
    try:
        cur = conn.execute(
            """INSERT INTO token_ledger
            (user_id, task_id, type, amount, balance_after, note, settlement_key, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (user_id, task_id, entry_type, amount, balance_after, note, settlement_key, stamp),
        )
    except sqlite3.IntegrityError:
        if settlement_key is None:
            raise
        logger.info("Ledger key %s already settled, skipping", settlement_key)
        return None
    conn.execute(
        "UPDATE users SET token_balance = token_balance + ? WHERE id = ?",
        (amount, user_id),
    )
    return LedgerEntry(
        id=cur.lastrowid,
        user_id=user_id,
        type=entry_type,
        amount=amount,
        balance_after=balance_after,
        task_id=task_id,
        note=note,
        settlement_key=settlement_key,
        created_at=stamp,
    )


def get_entries(db_path: str, user_id: int, limit: int | None = None) -> list[LedgerEntry]:
    """Entries for a user in creation order (newest last)."""
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT * FROM token_ledger WHERE user_id = ? ORDER BY id ASC", (user_id,)
    ).fetchall()
    conn.close()
    entries = [_row_to_entry(r) for r in rows]
    if limit is not None:
        entries = entries[-limit:]
    return entries


def replay_balance(db_path: str, user_id: int) -> int:
    """Reconstruct a balance by summing the user's ledger in order."""
    return sum(e.amount for e in get_entries(db_path, user_id))


def verify_ledger(db_path: str, user_id: int) -> bool:
    """Check every cached balance_after against the running sum and the user row."""
    running = 0
    for entry in get_entries(db_path, user_id):
        running += entry.amount
        if entry.balance_after != running:
            logger.warning(
                "Ledger drift for user %d at entry %d: cached %d, running %d",
                user_id, entry.id, entry.balance_after, running,
            )
            return False
    conn = get_connection(db_path)
    balance = current_balance(conn, user_id)
    conn.close()
    return balance == running
