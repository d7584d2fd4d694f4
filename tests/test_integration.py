# tests/test_integration.py
"""End-to-end test of the core workflow."""
from datetime import timedelta

from conftest import NOW, FakeArbiter, FakeClient, make_mcqs, make_theory
from focus_engine.courses import create_announcement, get_task
from focus_engine.dashboard import get_global_leaderboard
from focus_engine.db import init_db
from focus_engine.errors import ContentGenerationError
from focus_engine.jobs import Scheduler, default_jobs
from focus_engine.ledger import replay_balance, verify_ledger
from focus_engine.planner import generate_announcement_plan
from focus_engine.quiz import answer_question, get_theory_questions, settle_quiz, start_quiz, submit_theory
from focus_engine.review import cast_review, respond_to_downvote
from focus_engine.seed import seed_all
from focus_engine.users import list_users


def test_announcement_to_dispute_workflow(tmp_db):
    """Announce, plan, quiz, submit, review, dispute and run the periodic jobs."""
    init_db(tmp_db)
    seed_all(tmp_db, NOW)
    asha, ben, chen = (u.id for u in list_users(tmp_db))

    # Plan a quiz on CS201 eight days out
    announcement_id = create_announcement(
        tmp_db, 1, "quiz", "Quiz 2", ["Heaps", "Hashing"], "2025-03-11", now=NOW,
    )
    plan = [
        {"dayIndex": 0, "title": "Heap basics", "description": "Sift up and down",
         "difficulty": "medium", "durationHours": 2},
        {"dayIndex": 6, "title": "Hashing drills", "description": "Collision handling",
         "durationHours": 3},
    ]
    task_ids = generate_announcement_plan(tmp_db, announcement_id, FakeClient([plan]), NOW)
    task = get_task(tmp_db, task_ids[0])
    assert task.urgency_label == "moderate"
    assert task.token_stake == 10

    # Asha passes and submits; Ben fails the same task
    quiz = start_quiz(tmp_db, asha, task.id, FakeClient([make_mcqs(correct=2)]), NOW)
    for i in range(6):
        answer_question(tmp_db, quiz["attempt_id"], i, 2, NOW + timedelta(seconds=2 * i + 1))
    assert settle_quiz(tmp_db, quiz["attempt_id"], NOW)["passed"]
    get_theory_questions(tmp_db, quiz["attempt_id"], FakeClient([make_theory()]))
    submit_theory(tmp_db, quiz["attempt_id"], "uploads/asha/heaps.pdf", NOW)

    failed = start_quiz(tmp_db, ben, task.id, FakeClient([make_mcqs()]), NOW)
    assert not settle_quiz(tmp_db, failed["attempt_id"], NOW)["passed"]

    # Ben downvotes Asha, she disputes and the arbiter sides with her
    review_id = cast_review(tmp_db, ben, asha, task.id, "downvote", 4, "Heap property is violated in Q2.", NOW)
    review = respond_to_downvote(tmp_db, review_id, asha, "disagree", FakeArbiter("reviewee_correct"), NOW)
    assert review["dispute_status"] == "resolved_reviewee_wins"
    # Chen upvotes
    cast_review(tmp_db, chen, asha, task.id, "upvote", 2, now=NOW)

    board = get_global_leaderboard(tmp_db)
    assert board[0]["user_id"] == asha

    # A week of absence: decay runs, Ben bleeds
    later = NOW + timedelta(days=6)
    scheduler = Scheduler(tmp_db, default_jobs(tmp_db, FakeClient([ContentGenerationError("quota")])))
    results = scheduler.run_pending(later.replace(hour=2))
    assert results["tolerance_check"]["penalised"] == 2
    assert results["token_decay"]["decayed"] >= 1
    # CS201 had a recent announcement, PH105 has no chapters, MA210 fails to generate
    assert results["weekly_plans"] == {"courses": 3, "tasks_created": 0, "failed": 1}
    assert results["sunday_revision"]["tasks_created"] == 0

    for user in list_users(tmp_db):
        assert verify_ledger(tmp_db, user.id)
        assert replay_balance(tmp_db, user.id) == user.token_balance
