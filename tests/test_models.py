# tests/test_models.py
import pytest

from focus_engine.errors import ConflictError, IllegalTransitionError
from focus_engine.models import Task, User
from focus_engine.states import (
    AttemptStatus, DisputeStatus, TaskStatus, can_transition, is_terminal, transition,
)


def test_task_defaults():
    task = Task(
        title="Read chapter 1", description="Skim and summarise", topic="Arrays",
        difficulty="easy", token_stake=5, reward=5, duration_hours=1,
        scheduled_date="2025-03-03", deadline="2025-03-09", course_id=1,
    )
    assert task.status == "pending"
    assert task.pass_number == 1
    assert not task.is_revision
    task.pass_number = 2
    assert task.is_revision


def test_user_defaults():
    user = User(id=1, name="Alice")
    assert user.token_balance == 100
    assert user.streak.current_days == 0
    assert user.stats.quizzes_taken == 0


def test_task_transitions():
    assert transition(TaskStatus.PENDING, TaskStatus.IN_PROGRESS) == TaskStatus.IN_PROGRESS
    assert can_transition(TaskStatus.PENDING, TaskStatus.SUPERSEDED)
    assert not can_transition(TaskStatus.IN_PROGRESS, TaskStatus.SUPERSEDED)
    assert is_terminal(TaskStatus.COMPLETED)


def test_attempt_transitions():
    assert can_transition(AttemptStatus.MCQ_IN_PROGRESS, AttemptStatus.FAILED)
    assert can_transition(AttemptStatus.THEORY_PENDING, AttemptStatus.SUBMITTED)
    assert is_terminal(AttemptStatus.FAILED)
    assert not is_terminal(AttemptStatus.MCQ_COMPLETED)


def test_dispute_transitions():
    assert can_transition(DisputeStatus.PENDING_RESPONSE, DisputeStatus.AGREED)
    assert can_transition(DisputeStatus.AI_REVIEWING, DisputeStatus.RESOLVED_REVIEWEE_WINS)
    assert is_terminal(DisputeStatus.NONE)


# --- Edge case tests ---

def test_illegal_transition_raises():
    with pytest.raises(IllegalTransitionError) as exc:
        transition(TaskStatus.COMPLETED, TaskStatus.PENDING)
    assert exc.value.entity == "Task"
    assert isinstance(exc.value, ConflictError)


def test_no_skipping_dispute_steps():
    with pytest.raises(IllegalTransitionError):
        transition(DisputeStatus.PENDING_RESPONSE, DisputeStatus.RESOLVED_DOWNVOTER_WINS)
