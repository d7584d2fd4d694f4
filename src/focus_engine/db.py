"""Database initialization, connection management and transactions."""
import sqlite3
from contextlib import contextmanager
from pathlib import Path

DEFAULT_DB_PATH = str(Path.home() / ".focus_engine" / "engine.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    code TEXT DEFAULT '',
    credit_weight INTEGER NOT NULL DEFAULT 5,
    current_chapter_index INTEGER NOT NULL DEFAULT 0,
    last_fallback_date TEXT
);

CREATE TABLE IF NOT EXISTS chapters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL REFERENCES courses(id),
    number INTEGER NOT NULL,
    title TEXT NOT NULL,
    UNIQUE(course_id, number)
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    token_balance INTEGER NOT NULL DEFAULT 0 CHECK (token_balance >= 0),
    reputation INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_active_date TEXT,
    last_penalty_date TEXT,
    tokens_lost_to_decay INTEGER NOT NULL DEFAULT 0,
    revision_course_index INTEGER NOT NULL DEFAULT 0,
    tasks_completed INTEGER NOT NULL DEFAULT 0,
    quizzes_taken INTEGER NOT NULL DEFAULT 0,
    quizzes_passed INTEGER NOT NULL DEFAULT 0,
    avg_mcq_score REAL NOT NULL DEFAULT 0,
    tokens_earned INTEGER NOT NULL DEFAULT 0,
    tokens_lost INTEGER NOT NULL DEFAULT 0,
    upvotes_received INTEGER NOT NULL DEFAULT 0,
    downvotes_received INTEGER NOT NULL DEFAULT 0,
    downvotes_lost INTEGER NOT NULL DEFAULT 0,
    downvotes_defended INTEGER NOT NULL DEFAULT 0,
    reviews_given INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS enrollments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    course_id INTEGER NOT NULL REFERENCES courses(id),
    UNIQUE(user_id, course_id)
);

CREATE TABLE IF NOT EXISTS announcements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL REFERENCES courses(id),
    event_type TEXT NOT NULL,
    title TEXT NOT NULL,
    topics TEXT NOT NULL DEFAULT '[]',  -- JSON
    event_date TEXT NOT NULL,
    auto_generated INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL REFERENCES courses(id),
    announcement_id INTEGER REFERENCES announcements(id),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    topic TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'reading',
    difficulty TEXT NOT NULL,
    token_stake INTEGER NOT NULL CHECK (token_stake >= 1),
    reward INTEGER NOT NULL,
    urgency_multiplier REAL NOT NULL DEFAULT 1.0,
    urgency_label TEXT NOT NULL DEFAULT 'normal',
    duration_hours REAL NOT NULL CHECK (duration_hours <= 4),
    scheduled_date TEXT NOT NULL,
    deadline TEXT NOT NULL,
    pass_number INTEGER NOT NULL DEFAULT 1,
    day_index INTEGER NOT NULL DEFAULT 0,
    chapter_number INTEGER,
    source TEXT NOT NULL DEFAULT 'announcement',
    status TEXT NOT NULL DEFAULT 'pending',
    assigned_to INTEGER REFERENCES users(id),
    superseded_by INTEGER REFERENCES announcements(id),
    completed_at TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS quiz_attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    task_id INTEGER NOT NULL REFERENCES tasks(id),
    course_id INTEGER NOT NULL REFERENCES courses(id),
    attempt_number INTEGER NOT NULL CHECK (attempt_number >= 1),
    effective_stake INTEGER NOT NULL,
    mcqs TEXT NOT NULL,  -- JSON
    mcq_started_at TEXT NOT NULL,
    mcq_score INTEGER,
    mcq_passed INTEGER,
    status TEXT NOT NULL DEFAULT 'mcq_in_progress',
    token_settled INTEGER NOT NULL DEFAULT 0,
    tokens_awarded INTEGER NOT NULL DEFAULT 0,
    theory_questions TEXT NOT NULL DEFAULT '[]',  -- JSON
    theory_submission_ref TEXT,
    theory_submitted_at TEXT,
    created_at TEXT,
    UNIQUE(user_id, task_id, attempt_number)
);

CREATE TABLE IF NOT EXISTS mcq_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    attempt_id INTEGER NOT NULL REFERENCES quiz_attempts(id),
    question_index INTEGER NOT NULL,
    selected_answer INTEGER,
    is_correct INTEGER,
    points INTEGER NOT NULL,
    time_taken_ms INTEGER,
    answered_at TEXT,
    UNIQUE(attempt_id, question_index)
);

CREATE TABLE IF NOT EXISTS token_ledger (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    task_id INTEGER REFERENCES tasks(id),
    type TEXT NOT NULL,
    amount INTEGER NOT NULL,
    balance_after INTEGER NOT NULL,
    note TEXT DEFAULT '',
    settlement_key TEXT UNIQUE,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS peer_reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reviewer_id INTEGER NOT NULL REFERENCES users(id),
    reviewee_id INTEGER NOT NULL REFERENCES users(id),
    task_id INTEGER NOT NULL REFERENCES tasks(id),
    quiz_attempt_id INTEGER NOT NULL REFERENCES quiz_attempts(id),
    course_id INTEGER NOT NULL REFERENCES courses(id),
    type TEXT NOT NULL,
    wager INTEGER NOT NULL CHECK (wager >= 1),
    reason TEXT DEFAULT '',
    dispute_status TEXT NOT NULL DEFAULT 'none',
    ai_decision TEXT,
    ai_confidence REAL,
    ai_reasoning TEXT,
    ai_reviewed_at TEXT,
    settled INTEGER NOT NULL DEFAULT 0,
    tokens_transferred INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    UNIQUE(reviewer_id, task_id)
);

CREATE TABLE IF NOT EXISTS course_proficiency (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    course_id INTEGER NOT NULL REFERENCES courses(id),
    upvotes_received INTEGER NOT NULL DEFAULT 0,
    downvotes_received INTEGER NOT NULL DEFAULT 0,
    downvotes_lost INTEGER NOT NULL DEFAULT 0,
    downvotes_defended INTEGER NOT NULL DEFAULT 0,
    tasks_completed INTEGER NOT NULL DEFAULT 0,
    tasks_attempted INTEGER NOT NULL DEFAULT 0,
    quizzes_passed INTEGER NOT NULL DEFAULT 0,
    quizzes_failed INTEGER NOT NULL DEFAULT 0,
    proficiency_score INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, course_id)
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    value TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_course_date ON tasks(course_id, scheduled_date);
CREATE INDEX IF NOT EXISTS idx_ledger_user ON token_ledger(user_id, id);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


@contextmanager
def transaction(db_path: str = DEFAULT_DB_PATH):
    """Yield a connection inside a BEGIN IMMEDIATE transaction.

    The write lock is taken up front, so a balance read and the ledger row
    written from it cannot interleave with another writer. Commits on exit,
    rolls back if the block raises.
    """
    conn = get_connection(db_path)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def get_setting(db_path: str, key: str, default: str = None) -> str | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    conn.close()
    return row["value"] if row else default


def set_setting(db_path: str, key: str, value: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=?",
        (key, value, value),
    )
    conn.commit()
    conn.close()
