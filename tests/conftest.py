import json
from datetime import datetime

import pytest

from focus_engine.courses import create_course, insert_task
from focus_engine.db import init_db, transaction
from focus_engine.models import AiVerdict, Task
from focus_engine.users import create_user, enroll

NOW = datetime(2025, 3, 3, 9, 0, 0)  # a Monday


class FakeClient:
    """Stands in for ContentClient: hands out canned responses in order."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("Unexpected content request")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)


class FakeArbiter:
    def __init__(self, decision="downvoter_correct", confidence=0.9, error=None):
        self.decision = decision
        self.confidence = confidence
        self.error = error
        self.calls = 0

    def arbitrate(self, **kwargs) -> AiVerdict:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return AiVerdict(decision=self.decision, confidence=self.confidence, reasoning="Checked Q1.")


def make_mcqs(correct=0):
    return [
        {"question": f"Question {i}?", "options": ["A", "B", "C", "D"], "correctAnswer": correct}
        for i in range(6)
    ]


def make_theory():
    return [f"Explain concept {i}." for i in range(1, 8)]


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_engine.db")
    return db_path


@pytest.fixture
def world(tmp_db):
    """An initialised database with one course, two enrolled users and a task."""
    init_db(tmp_db)
    course_id = create_course(
        tmp_db, "Data Structures", "CS201", credit_weight=5,
        chapters=["Arrays", "Stacks", "Trees", "Heaps", "Hashing", "Graphs"],
    )
    alice = create_user(tmp_db, "Alice", NOW)
    bob = create_user(tmp_db, "Bob", NOW)
    enroll(tmp_db, alice, course_id)
    enroll(tmp_db, bob, course_id)
    task_id = add_task(tmp_db, course_id, stake=10)
    return {"db": tmp_db, "course_id": course_id, "alice": alice, "bob": bob, "task_id": task_id}


def add_task(db_path, course_id, stake=10, **overrides):
    fields = dict(
        title="Linked list drills",
        description="Implement insert and delete.",
        topic="Linked Lists",
        difficulty="medium",
        token_stake=stake,
        reward=stake,
        duration_hours=2,
        scheduled_date="2025-03-03",
        deadline="2025-03-20",
        course_id=course_id,
        created_at=NOW.isoformat(),
    )
    fields.update(overrides)
    with transaction(db_path) as conn:
        return insert_task(conn, Task(**fields))
