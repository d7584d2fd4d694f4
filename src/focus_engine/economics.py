"""Task pricing: difficulty base stakes, credit weight and deadline urgency."""
import math
from datetime import date, datetime

from focus_engine.errors import ValidationError
from focus_engine.models import Urgency

BASE_STAKES = {"easy": 5, "medium": 10, "hard": 20}
DURATION_RANGES = {"easy": (1, 2), "medium": (2, 3), "hard": (3, 4)}
MAX_DURATION_HOURS = 4

EVENT_TASK_COUNTS = {"quiz": 3, "assignment": 4, "lab": 3, "lecture": 2, "midterm": 6, "final": 8}
DEFAULT_TASK_COUNT = 4

# (exclusive upper bound in days, multiplier, label); 14 days itself is still moderate
URGENCY_STEPS = [
    (3, 2.0, "critical"),
    (7, 1.5, "high"),
]
MODERATE_MAX_DAYS = 14


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (Python's round() is banker's)."""
    return math.floor(value + 0.5)


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(value)


def credit_factor(credit_weight: float) -> float:
    """Credit weight clamped to 1..10 and scaled so a 5-credit course is neutral."""
    return max(1, min(10, credit_weight)) / 5


def days_remaining(event_date, now) -> float:
    delta = _as_datetime(event_date) - _as_datetime(now)
    return max(0.0, delta.total_seconds() / 86400)


def calculate_urgency(event_date, now=None) -> Urgency:
    days = days_remaining(event_date, now or datetime.now())
    for upper, multiplier, label in URGENCY_STEPS:
        if days < upper:
            return Urgency(multiplier=multiplier, label=label)
    if days <= MODERATE_MAX_DAYS:
        return Urgency(multiplier=1.25, label="moderate")
    return Urgency(multiplier=1.0, label="normal")


def calculate_token_economics(difficulty: str, credit_weight: float, urgency_multiplier: float = 1.0) -> dict:
    """Price one task. Stake and reward are always equal."""
    if difficulty not in BASE_STAKES:
        raise ValidationError(f"Unknown difficulty: {difficulty}")
    stake = round_half_up(BASE_STAKES[difficulty] * credit_factor(credit_weight) * urgency_multiplier)
    return {"token_stake": stake, "reward": stake}


def price_task(difficulty: str, credit_weight: float, event_date, now=None) -> dict:
    """Price a task against a deadline, including the urgency it was priced at."""
    urgency = calculate_urgency(event_date, now)
    prices = calculate_token_economics(difficulty, credit_weight, urgency.multiplier)
    prices["urgency_multiplier"] = urgency.multiplier
    prices["urgency_label"] = urgency.label
    return prices


def price_task_without_urgency(difficulty: str, credit_weight: float) -> dict:
    """Self-paced plans have no fixed deadline, so urgency is fixed at 1.0."""
    prices = calculate_token_economics(difficulty, credit_weight, 1.0)
    prices["urgency_multiplier"] = 1.0
    prices["urgency_label"] = "normal"
    return prices


def task_count_for_event(event_type: str) -> int:
    return EVENT_TASK_COUNTS.get(event_type, DEFAULT_TASK_COUNT)


def default_duration(difficulty: str) -> int:
    return DURATION_RANGES[difficulty][1]
