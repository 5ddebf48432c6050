"""
Fixed-ladder spaced repetition scheduling.
"""

from .scheduler import (
	REVIEW_INTERVALS,
	review_interval_days,
	next_review_date,
	get_due,
	days_overdue,
	mastery_level,
	question_difficulty,
)

__all__ = [
	'REVIEW_INTERVALS',
	'review_interval_days',
	'next_review_date',
	'get_due',
	'days_overdue',
	'mastery_level',
	'question_difficulty',
]
