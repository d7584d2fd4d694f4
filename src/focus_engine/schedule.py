"""Three-pass study schedule: learn, revise, revise again."""
from datetime import date, datetime, timedelta

from focus_engine.economics import round_half_up
from focus_engine.errors import ValidationError
from focus_engine.models import ScheduleSlot

PASS_SHARES = (0.40, 0.35)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


def split_passes(total_days: int) -> tuple[int, int, int]:
    """Days per pass. Pass 3 takes the remainder; every pass gets at least one day."""
    pass1 = max(1, round_half_up(PASS_SHARES[0] * total_days))
    pass2 = max(1, round_half_up(PASS_SHARES[1] * total_days))
    pass3 = max(1, total_days - pass1 - pass2)
    return pass1, pass2, pass3


def count_days(start, end) -> int:
    start_day, end_day = _as_date(start), _as_date(end)
    if end_day < start_day:
        raise ValidationError(f"Schedule end {end_day} is before start {start_day}")
    return max(1, (end_day - start_day).days)


def build_schedule(topics: list[str], start, end) -> list[ScheduleSlot]:
    """Lay topics round-robin over three passes between ``start`` and ``end``.

    ``end`` is the event day and is never used as a study day. When the range
    is shorter than three days, later passes share the last available day.
    """
    if not topics:
        raise ValidationError("At least one topic is required")
    start_day = _as_date(start)
    total_days = count_days(start, end)
    last_index = total_days - 1

    slots = []
    day_index = 0
    for pass_number, pass_days in enumerate(split_passes(total_days), start=1):
        for d in range(pass_days):
            index = min(day_index, last_index)
            slots.append(ScheduleSlot(
                date=start_day + timedelta(days=index),
                topic=topics[d % len(topics)],
                pass_number=pass_number,
                day_index=index,
            ))
            day_index += 1
    return slots
