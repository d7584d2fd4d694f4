# tests/test_economics.py
from datetime import datetime, timedelta

import pytest

from focus_engine.economics import (
    calculate_token_economics, calculate_urgency, default_duration, price_task,
    price_task_without_urgency, round_half_up, task_count_for_event,
)
from focus_engine.errors import ValidationError

NOW = datetime(2025, 3, 1, 12, 0)


def test_hard_task_four_credits_five_days_out():
    prices = price_task("hard", 4, NOW + timedelta(days=5), NOW)
    assert prices["token_stake"] == 24
    assert prices["reward"] == 24
    assert prices["urgency_label"] == "high"


def test_stake_equals_reward():
    for difficulty in ("easy", "medium", "hard"):
        prices = calculate_token_economics(difficulty, 7, 1.25)
        assert prices["token_stake"] == prices["reward"]


def test_neutral_credit_weight():
    assert calculate_token_economics("medium", 5)["token_stake"] == 10


def test_urgency_bands():
    assert calculate_urgency(NOW + timedelta(days=2), NOW).label == "critical"
    assert calculate_urgency(NOW + timedelta(days=3), NOW).label == "high"
    assert calculate_urgency(NOW + timedelta(days=10), NOW).multiplier == 1.25
    assert calculate_urgency(NOW + timedelta(days=14), NOW).label == "moderate"
    assert calculate_urgency(NOW + timedelta(days=15), NOW).multiplier == 1.0


def test_past_event_is_critical():
    assert calculate_urgency(NOW - timedelta(days=1), NOW).multiplier == 2.0


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def test_without_urgency_is_normal():
    prices = price_task_without_urgency("easy", 5)
    assert prices == {"token_stake": 5, "reward": 5, "urgency_multiplier": 1.0, "urgency_label": "normal"}


def test_event_task_counts_and_durations():
    assert task_count_for_event("final") == 8
    assert task_count_for_event("seminar") == 4
    assert default_duration("hard") == 4


# --- Edge case tests ---

def test_credit_weight_is_clamped():
    assert calculate_token_economics("easy", 0)["token_stake"] == 1
    assert calculate_token_economics("easy", 50)["token_stake"] == 10


def test_unknown_difficulty_rejected():
    with pytest.raises(ValidationError):
        calculate_token_economics("brutal", 5)
