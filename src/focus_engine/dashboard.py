"""Leaderboards and per-user status projections."""
from datetime import datetime

from focus_engine.db import get_connection
from focus_engine.tolerance import tolerance_status
from focus_engine.users import get_user


def get_tolerance_label(status: dict) -> str:
    if status["current_bleed_rate"] > 0:
        return "BLEEDING"
    elif status["tolerance_remaining"] <= 1:
        return "AT RISK"
    return "SAFE"


def get_tolerance_color(status: dict) -> str:
    label = get_tolerance_label(status)
    if label == "BLEEDING":
        return "red"
    elif label == "AT RISK":
        return "yellow"
    return "green"


def get_global_leaderboard(db_path: str, limit: int = 10) -> list[dict]:
    conn = get_connection(db_path)
    rows = conn.execute(
        """SELECT id, name, reputation, token_balance, current_streak
        FROM users ORDER BY reputation DESC, token_balance DESC, id LIMIT ?""",
        (limit,),
    ).fetchall()
    conn.close()
    return [
        {
            "rank": rank,
            "user_id": r["id"],
            "name": r["name"],
            "reputation": r["reputation"],
            "token_balance": r["token_balance"],
            "streak": r["current_streak"],
        }
        for rank, r in enumerate(rows, start=1)
    ]


def get_course_leaderboard(db_path: str, course_id: int, limit: int = 10) -> list[dict]:
    conn = get_connection(db_path)
    rows = conn.execute(
        """SELECT cp.user_id, u.name, cp.proficiency_score, cp.quizzes_passed, cp.tasks_completed
        FROM course_proficiency cp JOIN users u ON cp.user_id = u.id
        WHERE cp.course_id = ?
        ORDER BY cp.proficiency_score DESC, cp.user_id LIMIT ?""",
        (course_id, limit),
    ).fetchall()
    conn.close()
    return [
        {
            "rank": rank,
            "user_id": r["user_id"],
            "name": r["name"],
            "proficiency_score": r["proficiency_score"],
            "quizzes_passed": r["quizzes_passed"],
            "tasks_completed": r["tasks_completed"],
        }
        for rank, r in enumerate(rows, start=1)
    ]


def get_tolerance_status(db_path: str, user_id: int, now: datetime | None = None) -> dict:
    status = tolerance_status(get_user(db_path, user_id), now)
    status["label"] = get_tolerance_label(status)
    return status


def get_user_summary(db_path: str, user_id: int, now: datetime | None = None) -> dict:
    user = get_user(db_path, user_id)
    today = (now or datetime.now()).date().isoformat()
    conn = get_connection(db_path)
    open_tasks = conn.execute(
        """SELECT COUNT(*) FROM tasks t JOIN enrollments e ON e.course_id = t.course_id
        WHERE e.user_id = ? AND t.status IN ('pending', 'in_progress')
        AND (t.assigned_to IS NULL OR t.assigned_to = ?)""",
        (user_id, user_id),
    ).fetchone()[0]
    due_today = conn.execute(
        """SELECT COUNT(*) FROM tasks t JOIN enrollments e ON e.course_id = t.course_id
        WHERE e.user_id = ? AND t.status IN ('pending', 'in_progress') AND t.scheduled_date = ?
        AND (t.assigned_to IS NULL OR t.assigned_to = ?)""",
        (user_id, today, user_id),
    ).fetchone()[0]
    conn.close()
    stats = user.stats
    pass_rate = round(stats.quizzes_passed / stats.quizzes_taken * 100, 1) if stats.quizzes_taken else 0.0
    return {
        "user_id": user.id,
        "name": user.name,
        "token_balance": user.token_balance,
        "reputation": user.reputation,
        "current_streak": user.streak.current_days,
        "longest_streak": user.streak.longest_streak,
        "open_tasks": open_tasks,
        "due_today": due_today,
        "quizzes_taken": stats.quizzes_taken,
        "pass_rate": pass_rate,
        "avg_mcq_score": stats.avg_mcq_score,
        "tokens_earned": stats.tokens_earned,
        "tokens_lost": stats.tokens_lost,
    }
