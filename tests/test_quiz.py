# tests/test_quiz.py
from datetime import timedelta

import pytest

from conftest import NOW, FakeClient, add_task, make_mcqs, make_theory
from focus_engine.courses import get_task
from focus_engine.db import get_connection
from focus_engine.errors import (
    ConflictError, ContentShapeError, InsufficientTokensError, ValidationError,
)
from focus_engine.ledger import get_entries, verify_ledger
from focus_engine.models import McqQuestion, McqResponse
from focus_engine.quiz import (
    answer_question, attempt_info, effective_stake, get_theory_questions, quiz_result,
    score_answer, settle_quiz, start_quiz, submit_theory, total_score,
)
from focus_engine.users import get_user


def _play(db, user_id, task_id, correct_count, now=NOW, skip=0):
    """Start a quiz and answer ``correct_count`` right, ``skip`` blank, the rest wrong."""
    quiz = start_quiz(db, user_id, task_id, FakeClient([make_mcqs(correct=0)]), now)
    for i in range(6):
        if i < correct_count:
            selected = 0
        elif i < correct_count + skip:
            selected = None
        else:
            selected = 1
        answer_question(db, quiz["attempt_id"], i, selected, now + timedelta(seconds=i + 1))
    return quiz


def _responses(points):
    return [McqResponse(question_index=i, selected_answer=0, is_correct=None, points=p)
            for i, p in enumerate(points)]


def test_scores_at_the_boundaries():
    assert total_score(_responses([2] * 6)) == 12
    assert total_score(_responses([2] * 5 + [-2])) == 8
    assert total_score(_responses([2] * 4 + [-2] * 2)) == 4


def test_missing_responses_count_as_unattempted():
    assert total_score(_responses([2] * 5)) == 9


def test_score_answer():
    mcq = McqQuestion(question="?", options=["a", "b", "c", "d"], correct_answer=2)
    assert score_answer(mcq, 0, 2, 5_000).points == 2
    assert score_answer(mcq, 0, 1, 5_000).points == -2
    assert score_answer(mcq, 0, None, 5_000).points == -1
    timed_out = score_answer(mcq, 0, 2, 17_001)
    assert timed_out.points == -1
    assert timed_out.is_correct is None


def test_effective_stake_decays_per_attempt():
    assert [effective_stake(25, n) for n in (1, 2, 3)] == [25, 15, 9]
    assert effective_stake(1, 5) == 1


def test_start_quiz_takes_stake(world):
    db = world["db"]
    quiz = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    assert quiz["attempt_number"] == 1
    assert quiz["effective_stake"] == 10
    assert len(quiz["mcqs"]) == 6
    assert "correct_answer" not in quiz["mcqs"][0]
    assert get_user(db, world["alice"]).token_balance == 90


def test_pass_returns_stake_plus_reward(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=6)
    result = settle_quiz(db, quiz["attempt_id"], NOW + timedelta(minutes=2))
    assert result["score"] == 12
    assert result["passed"] is True
    assert result["status"] == "mcq_completed"
    user = get_user(db, world["alice"])
    assert user.token_balance == 110
    assert user.stats.quizzes_passed == 1
    assert user.stats.tokens_earned == 10
    assert user.stats.avg_mcq_score == 12
    assert user.streak.current_days == 1
    assert verify_ledger(db, world["alice"])


def test_eight_points_pass(world):
    quiz = _play(world["db"], world["alice"], world["task_id"], correct_count=5)
    assert settle_quiz(world["db"], quiz["attempt_id"], NOW)["passed"] is True


def test_four_points_fail_and_forfeit_stake(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=4)
    result = settle_quiz(db, quiz["attempt_id"], NOW)
    assert result["score"] == 4
    assert result["passed"] is False
    assert result["status"] == "failed"
    user = get_user(db, world["alice"])
    assert user.token_balance == 90
    assert user.stats.tokens_lost == 10
    assert get_entries(db, world["alice"])[-1].type == "penalty"


def test_settling_twice_is_a_no_op(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=6)
    first = settle_quiz(db, quiz["attempt_id"], NOW)
    second = settle_quiz(db, quiz["attempt_id"], NOW)
    assert first == second
    assert get_user(db, world["alice"]).token_balance == 110
    assert len(get_entries(db, world["alice"])) == 3


def test_unanswered_questions_filled_on_settle(world):
    db = world["db"]
    quiz = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    result = settle_quiz(db, quiz["attempt_id"], NOW)
    assert result["score"] == -6
    assert len(result["breakdown"]) == 6
    assert all(r["your_answer"] == "Unattempted" for r in result["breakdown"])


def test_reattempt_costs_less(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=0)
    settle_quiz(db, quiz["attempt_id"], NOW)
    info = attempt_info(db, world["alice"], world["task_id"])
    assert info["can_retry"]
    assert info["next_stake"] == 6
    second = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    assert second["attempt_number"] == 2
    assert second["effective_stake"] == 6


def test_theory_flow(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=6)
    settle_quiz(db, quiz["attempt_id"], NOW)
    client = FakeClient([make_theory()])
    questions = get_theory_questions(db, quiz["attempt_id"], client)
    assert len(questions) == 7
    # stored after the first request
    assert get_theory_questions(db, quiz["attempt_id"], FakeClient()) == questions
    submit_theory(db, quiz["attempt_id"], "uploads/alice/task1.pdf", NOW)
    assert quiz_result(db, quiz["attempt_id"])["status"] == "submitted"
    assert get_user(db, world["alice"]).stats.tasks_completed == 1


def test_personal_task_completes_on_submission(world):
    db = world["db"]
    task_id = add_task(db, world["course_id"], stake=5, assigned_to=world["alice"], source="sunday_revision")
    quiz = _play(db, world["alice"], task_id, correct_count=6)
    assert get_task(db, task_id).status == "in_progress"
    settle_quiz(db, quiz["attempt_id"], NOW)
    get_theory_questions(db, quiz["attempt_id"], FakeClient([make_theory()]))
    submit_theory(db, quiz["attempt_id"], "ref", NOW)
    assert get_task(db, task_id).status == "completed"


# --- Edge case tests ---

def test_insufficient_balance(world):
    db = world["db"]
    task_id = add_task(db, world["course_id"], stake=150)
    with pytest.raises(InsufficientTokensError):
        start_quiz(db, world["alice"], task_id, FakeClient([make_mcqs()]), NOW)


def test_generation_failure_costs_nothing(world):
    db = world["db"]
    bad = make_mcqs()[:5]
    with pytest.raises(ContentShapeError):
        start_quiz(db, world["alice"], world["task_id"], FakeClient([bad]), NOW)
    assert get_user(db, world["alice"]).token_balance == 100


def test_concurrent_attempt_rejected(world):
    db = world["db"]
    start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    with pytest.raises(ConflictError):
        start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW + timedelta(seconds=30))


def test_abandoned_attempt_settled_before_reattempt(world):
    db = world["db"]
    first = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    later = NOW + timedelta(minutes=5)
    second = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), later)
    assert quiz_result(db, first["attempt_id"])["status"] == "failed"
    assert second["attempt_number"] == 2


def test_superseded_task_cannot_be_attempted(world):
    db = world["db"]
    task_id = add_task(db, world["course_id"], status="superseded")
    with pytest.raises(ConflictError):
        start_quiz(db, world["alice"], task_id, FakeClient([make_mcqs()]), NOW)


def test_someone_elses_personal_task(world):
    db = world["db"]
    task_id = add_task(db, world["course_id"], assigned_to=world["bob"])
    with pytest.raises(ConflictError):
        start_quiz(db, world["alice"], task_id, FakeClient([make_mcqs()]), NOW)


def test_question_answered_twice(world):
    db = world["db"]
    quiz = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    answer_question(db, quiz["attempt_id"], 0, 0, NOW)
    with pytest.raises(ConflictError):
        answer_question(db, quiz["attempt_id"], 0, 1, NOW)


def test_answer_out_of_range(world):
    db = world["db"]
    quiz = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    with pytest.raises(ValidationError):
        answer_question(db, quiz["attempt_id"], 6, 0, NOW)
    with pytest.raises(ValidationError):
        answer_question(db, quiz["attempt_id"], 0, 4, NOW)


def test_answer_after_settlement_rejected(world):
    db = world["db"]
    quiz = start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    settle_quiz(db, quiz["attempt_id"], NOW)
    with pytest.raises(ConflictError):
        answer_question(db, quiz["attempt_id"], 0, 0, NOW)


def test_theory_requires_a_pass(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=1)
    settle_quiz(db, quiz["attempt_id"], NOW)
    with pytest.raises(ConflictError):
        get_theory_questions(db, quiz["attempt_id"], FakeClient([make_theory()]))


def test_attempts_are_kept(world):
    db = world["db"]
    quiz = _play(db, world["alice"], world["task_id"], correct_count=0)
    settle_quiz(db, quiz["attempt_id"], NOW)
    start_quiz(db, world["alice"], world["task_id"], FakeClient([make_mcqs()]), NOW)
    conn = get_connection(db)
    count = conn.execute("SELECT COUNT(*) FROM quiz_attempts").fetchone()[0]
    conn.close()
    assert count == 2


class SupersedingClient(FakeClient):
    """Generates questions, but a new plan supersedes the task meanwhile."""

    def __init__(self, db, task_id):
        super().__init__([make_mcqs()])
        self.db = db
        self.task_id = task_id

    def generate(self, prompt):
        conn = get_connection(self.db)
        conn.execute("UPDATE tasks SET status = 'superseded' WHERE id = ?", (self.task_id,))
        conn.commit()
        conn.close()
        return super().generate(prompt)


def test_task_superseded_during_generation(world):
    db = world["db"]
    client = SupersedingClient(db, world["task_id"])
    with pytest.raises(ConflictError):
        start_quiz(db, world["alice"], world["task_id"], client, NOW)
    assert get_user(db, world["alice"]).token_balance == 100
    assert attempt_info(db, world["alice"], world["task_id"])["total_attempts"] == 0
    assert verify_ledger(db, world["alice"])
