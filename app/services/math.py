import math
import statistics
from typing import List, Sequence


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round with .5 going up, matching how dashboards display numbers.

    ``round()`` uses banker's rounding (``round(2.5) == 2``), which makes
    displayed percentages disagree with hand calculations.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def percentage(part: float, whole: float, digits: int = 0) -> float:
    """``part / whole`` as a rounded percentage; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    result = round_half_up(part / whole * 100, digits)
    return int(result) if digits == 0 else result


def mean_int(values: Sequence[float]) -> int:
    """Rounded mean, 0 for no values."""
    if not values:
        return 0
    return int(round_half_up(statistics.fmean(values)))


def lower_median(values: List[float]) -> float:
    """Element at ``len // 2`` of the sorted values (upper-middle for even sizes)."""
    if not values:
        return 0
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def percent_change(current: float, previous: float) -> float:
    """Change from ``previous`` to ``current`` in percent, one decimal."""
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100, 1)
