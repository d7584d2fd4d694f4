"""Status enums and transition tables for tasks, quiz attempts and peer reviews."""
from enum import Enum

from focus_engine.errors import IllegalTransitionError


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class AttemptStatus(str, Enum):
    MCQ_IN_PROGRESS = "mcq_in_progress"
    MCQ_COMPLETED = "mcq_completed"
    FAILED = "failed"
    THEORY_PENDING = "theory_pending"
    SUBMITTED = "submitted"


class DisputeStatus(str, Enum):
    NONE = "none"
    PENDING_RESPONSE = "pending_response"
    AGREED = "agreed"
    DISPUTED = "disputed"
    AI_REVIEWING = "ai_reviewing"
    RESOLVED_DOWNVOTER_WINS = "resolved_downvoter_wins"
    RESOLVED_REVIEWEE_WINS = "resolved_reviewee_wins"


TASK_TRANSITIONS = {
    TaskStatus.PENDING: {
        TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED,
        TaskStatus.EXPIRED, TaskStatus.SUPERSEDED,
    },
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.EXPIRED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.EXPIRED: set(),
    TaskStatus.SUPERSEDED: set(),
}

ATTEMPT_TRANSITIONS = {
    AttemptStatus.MCQ_IN_PROGRESS: {AttemptStatus.MCQ_COMPLETED, AttemptStatus.FAILED},
    AttemptStatus.MCQ_COMPLETED: {AttemptStatus.THEORY_PENDING},
    AttemptStatus.THEORY_PENDING: {AttemptStatus.SUBMITTED},
    AttemptStatus.FAILED: set(),
    AttemptStatus.SUBMITTED: set(),
}

# Upvotes are created in NONE and never leave it.
DISPUTE_TRANSITIONS = {
    DisputeStatus.NONE: set(),
    DisputeStatus.PENDING_RESPONSE: {DisputeStatus.AGREED, DisputeStatus.DISPUTED},
    DisputeStatus.DISPUTED: {DisputeStatus.AI_REVIEWING},
    DisputeStatus.AI_REVIEWING: {
        DisputeStatus.RESOLVED_DOWNVOTER_WINS, DisputeStatus.RESOLVED_REVIEWEE_WINS,
    },
    DisputeStatus.AGREED: set(),
    DisputeStatus.RESOLVED_DOWNVOTER_WINS: set(),
    DisputeStatus.RESOLVED_REVIEWEE_WINS: set(),
}

_TABLES = {
    TaskStatus: ("Task", TASK_TRANSITIONS),
    AttemptStatus: ("QuizAttempt", ATTEMPT_TRANSITIONS),
    DisputeStatus: ("PeerReview", DISPUTE_TRANSITIONS),
}


def can_transition(current: Enum, target: Enum) -> bool:
    _, table = _TABLES[type(current)]
    return target in table[current]


def transition(current: Enum, target: Enum) -> Enum:
    """Return ``target`` if the move is legal, otherwise raise IllegalTransitionError."""
    entity, table = _TABLES[type(current)]
    if target not in table[current]:
        raise IllegalTransitionError(entity, current.value, target.value)
    return target


def is_terminal(status: Enum) -> bool:
    _, table = _TABLES[type(status)]
    return not table[status]
