"""Pydantic models for the persisted learning document.

Field names are snake_case in Python and camelCase on disk so stored blobs keep the
``{topics, knowledgePoints, practices, ...}`` shape.

Records written by older clients are accepted as they are: null fields fall back to their
defaults, an unparseable review date reads as unscheduled and out of range numbers are
clamped, so a single odd field never costs the whole record.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bounded_int(value: Any, low: int = 0, high: Optional[int] = None) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if math.isnan(number):
        return low
    number = max(low, number)
    if high is not None:
        number = min(high, number)
    return int(round(number))


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode='before')
    @classmethod
    def _nulls_as_missing(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator('created_at', mode='wrap', check_fields=False)
    @classmethod
    def _unparseable_created_at(cls, value, handler):
        try:
            return handler(value)
        except ValidationError:
            return _utcnow()


class Topic(_Document):
    id: str
    title: str
    content: str = ''
    created_at: datetime = Field(default_factory=_utcnow)
    knowledge_point_ids: List[str] = Field(default_factory=list)


class KnowledgePoint(_Document):
    id: str
    topic_id: str = ''
    title: str
    description: str = ''
    mastery: int = Field(0, ge=0, le=100)
    review_count: int = Field(0, ge=0)
    last_review: Optional[datetime] = None
    next_review: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator('mastery', mode='before')
    @classmethod
    def _clamp_mastery(cls, value):
        return _bounded_int(value, 0, 100)

    @field_validator('review_count', mode='before')
    @classmethod
    def _non_negative_count(cls, value):
        return _bounded_int(value)

    @field_validator('last_review', 'next_review', mode='wrap')
    @classmethod
    def _unparseable_as_unscheduled(cls, value, handler):
        try:
            return handler(value)
        except ValidationError:
            return None


class Practice(_Document):
    id: str
    # synced rows and older clients call it kpId
    knowledge_point_id: str = Field(validation_alias=AliasChoices('knowledgePointId', 'kpId', 'knowledge_point_id'), serialization_alias='knowledgePointId')
    question: str = ''
    answer: str = ''
    score: int = Field(0, ge=0, le=100)
    # full evaluation dict for graded answers, plain text for records restored from sync
    feedback: Any = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator('score', mode='before')
    @classmethod
    def _clamp_score(cls, value):
        return _bounded_int(value, 0, 100)


class LearningData(_Document):
    topics: List[Topic] = Field(default_factory=list)
    knowledge_points: List[KnowledgePoint] = Field(default_factory=list)
    practices: List[Practice] = Field(default_factory=list)
    review_schedule: List[Any] = Field(default_factory=list)
    daily_log: Dict[str, int] = Field(default_factory=dict)
    streak: int = 0
    last_study_date: Optional[date] = None

    @field_validator('review_schedule', mode='before')
    @classmethod
    def _schedule_list(cls, value):
        return value if isinstance(value, list) else []

    @field_validator('daily_log', mode='before')
    @classmethod
    def _daily_counts(cls, value):
        if not isinstance(value, dict):
            return {}
        return {str(day): _bounded_int(count) for day, count in value.items()}

    @field_validator('streak', mode='before')
    @classmethod
    def _non_negative_streak(cls, value):
        return _bounded_int(value)

    @field_validator('last_study_date', mode='wrap')
    @classmethod
    def _study_day(cls, value, handler):
        if isinstance(value, str):
            value = value[:10]
        try:
            return handler(value)
        except ValidationError:
            return None

    def find_topic(self, topic_id: str) -> Optional[Topic]:
        return next((t for t in self.topics if t.id == topic_id), None)

    def find_knowledge_point(self, kp_id: str) -> Optional[KnowledgePoint]:
        return next((k for k in self.knowledge_points if k.id == kp_id), None)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)
