"""Weighted random selection without replacement."""
import random

from focus_engine.errors import ValidationError


def weighted_sample(pairs: list[tuple], k: int, rng: random.Random | None = None) -> list:
    """Draw ``k`` distinct items from ``(item, weight)`` pairs.

    Each draw is proportional to the weights of the items still in the pool.
    When there are ``k`` or fewer items, all of them are returned in input order.
    """
    if k < 0:
        raise ValidationError(f"k must be non-negative, got {k}")
    if any(weight <= 0 for _, weight in pairs):
        raise ValidationError("All weights must be positive")
    if len(pairs) <= k:
        return [item for item, _ in pairs]

    rng = rng or random.Random()
    pool = list(pairs)
    chosen = []
    for _ in range(k):
        total = sum(weight for _, weight in pool)
        draw = rng.random() * total
        cumulative = 0.0
        # Float error can leave the draw just above the final cumulative sum.
        pick = len(pool) - 1
        for i, (_, weight) in enumerate(pool):
            cumulative += weight
            if draw < cumulative:
                pick = i
                break
        chosen.append(pool.pop(pick)[0])
    return chosen
