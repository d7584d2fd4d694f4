"""Data classes for the engine's domain model."""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional


@dataclass
class ScheduleSlot:
    date: date
    topic: str
    pass_number: int
    day_index: int


@dataclass
class Urgency:
    multiplier: float
    label: str


@dataclass
class Chapter:
    number: int
    title: str


@dataclass
class Course:
    id: int
    title: str
    code: str = ""
    credit_weight: int = 5
    chapters: list[Chapter] = field(default_factory=list)
    current_chapter_index: int = 0
    last_fallback_date: Optional[str] = None


@dataclass
class Announcement:
    id: int
    course_id: int
    event_type: str
    title: str
    topics: list[str]
    event_date: str
    auto_generated: bool = False
    created_at: Optional[str] = None


@dataclass
class Task:
    title: str
    description: str
    topic: str
    difficulty: str
    token_stake: int
    reward: int
    duration_hours: float
    scheduled_date: str
    deadline: str
    course_id: int
    announcement_id: Optional[int] = None
    type: str = "reading"
    pass_number: int = 1
    day_index: int = 0
    urgency_multiplier: float = 1.0
    urgency_label: str = "normal"
    source: str = "announcement"
    status: str = "pending"
    chapter_number: Optional[int] = None
    assigned_to: Optional[int] = None
    superseded_by: Optional[int] = None
    created_at: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_revision(self) -> bool:
        return self.pass_number > 1


@dataclass
class McqQuestion:
    question: str
    options: list[str]
    correct_answer: int


@dataclass
class McqResponse:
    question_index: int
    selected_answer: Optional[int]
    is_correct: Optional[bool]
    points: int
    time_taken_ms: Optional[int] = None


@dataclass
class Streak:
    current_days: int = 0
    longest_streak: int = 0
    last_active_date: Optional[str] = None


@dataclass
class Tolerance:
    last_penalty_date: Optional[str] = None
    tokens_lost_to_decay: int = 0


@dataclass
class UserStats:
    tasks_completed: int = 0
    quizzes_taken: int = 0
    quizzes_passed: int = 0
    avg_mcq_score: float = 0.0
    tokens_earned: int = 0
    tokens_lost: int = 0
    upvotes_received: int = 0
    downvotes_received: int = 0
    downvotes_lost: int = 0
    downvotes_defended: int = 0
    reviews_given: int = 0


@dataclass
class User:
    id: int
    name: str
    token_balance: int = 100
    reputation: int = 0
    streak: Streak = field(default_factory=Streak)
    tolerance: Tolerance = field(default_factory=Tolerance)
    stats: UserStats = field(default_factory=UserStats)
    revision_course_index: int = 0


@dataclass
class CourseProficiency:
    user_id: int
    course_id: int
    upvotes_received: int = 0
    downvotes_received: int = 0
    downvotes_lost: int = 0
    downvotes_defended: int = 0
    tasks_completed: int = 0
    tasks_attempted: int = 0
    quizzes_passed: int = 0
    quizzes_failed: int = 0
    proficiency_score: int = 0


@dataclass
class LedgerEntry:
    id: int
    user_id: int
    type: str
    amount: int
    balance_after: int
    task_id: Optional[int] = None
    note: str = ""
    settlement_key: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class AiVerdict:
    decision: str
    confidence: float
    reasoning: str
    reviewed_at: Optional[datetime] = None
