# tests/test_decay.py
from datetime import timedelta

from conftest import NOW, add_task
from focus_engine.courses import get_task
from focus_engine.db import get_connection
from focus_engine.decay import decay_step, run_token_decay


def test_decay_sequence_reaches_floor():
    stakes = [10]
    while stakes[-1] > 1:
        stakes.append(decay_step(stakes[-1]))
    assert stakes == [10, 8, 6, 5, 4, 3, 2, 1]


def test_floor_is_fixed_point():
    assert decay_step(1) == 1


def test_run_decays_old_open_tasks(world):
    result = run_token_decay(world["db"], NOW + timedelta(days=4))
    assert result == {"eligible": 1, "decayed": 1, "tokens_removed": 2}
    task = get_task(world["db"], world["task_id"])
    assert task.token_stake == 8
    assert task.reward == 8


def test_one_step_per_run(world):
    run_token_decay(world["db"], NOW + timedelta(days=4))
    run_token_decay(world["db"], NOW + timedelta(days=7))
    assert get_task(world["db"], world["task_id"]).token_stake == 6


# --- Edge case tests ---

def test_recent_tasks_are_not_decayed(world):
    result = run_token_decay(world["db"], NOW + timedelta(days=2))
    assert result["eligible"] == 0
    assert get_task(world["db"], world["task_id"]).token_stake == 10


def test_terminal_and_past_deadline_tasks_skipped(world):
    db = world["db"]
    done = add_task(db, world["course_id"], stake=10, status="completed")
    overdue = add_task(db, world["course_id"], stake=10, deadline="2025-03-05")
    run_token_decay(db, NOW + timedelta(days=4))
    assert get_task(db, done).token_stake == 10
    assert get_task(db, overdue).token_stake == 10


def test_stake_never_drops_below_one(world):
    db = world["db"]
    conn = get_connection(db)
    conn.execute("UPDATE tasks SET token_stake = 1, reward = 1 WHERE id = ?", (world["task_id"],))
    conn.commit()
    conn.close()
    result = run_token_decay(db, NOW + timedelta(days=4))
    assert result["decayed"] == 0
    assert get_task(db, world["task_id"]).token_stake == 1
