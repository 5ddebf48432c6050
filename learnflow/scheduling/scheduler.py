from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

# Review ladder in days, indexed by how many times a point has been reviewed
REVIEW_INTERVALS = [1, 3, 7, 14, 30, 60]

PASS_SCORE = 60
GOOD_SCORE = 80


def _now() -> datetime:
    return datetime.now(timezone.utc)


def review_interval_days(review_count: int, score: float) -> int:
    """Interval in days for a point reviewed ``review_count`` times, last scored ``score``.

    Low scores shorten the interval: below 60 it is halved, below 80 cut to three quarters.
    The interval is never below one day.
    """
    idx = max(0, min(review_count - 1, len(REVIEW_INTERVALS) - 1))
    interval = REVIEW_INTERVALS[idx]
    if score < PASS_SCORE:
        interval = int(interval * 0.5)
    elif score < GOOD_SCORE:
        interval = int(interval * 0.75)
    return max(1, interval)


def next_review_date(review_count: int, score: float, now: Optional[datetime] = None) -> datetime:
    base = now or _now()
    return base + timedelta(days=review_interval_days(review_count, score))


def get_due(points: Iterable, now: Optional[datetime] = None) -> List:
    """Points whose ``next_review`` is set and not after ``now``."""
    now = now or _now()
    return [kp for kp in points if kp.next_review is not None and kp.next_review <= now]


def days_overdue(next_review: Optional[datetime], now: Optional[datetime] = None) -> int:
    if next_review is None:
        return 0
    now = now or _now()
    if now < next_review:
        return 0
    return (now - next_review).days


def mastery_level(mastery: float) -> str:
    if mastery >= 70:
        return 'high'
    if mastery >= 40:
        return 'medium'
    return 'low'


def question_difficulty(mastery: float) -> str:
    # stronger mastery earns harder questions
    return {'high': 'hard', 'medium': 'medium', 'low': 'easy'}[mastery_level(mastery)]
