"""Learning document store.

Every mutation reads the whole document, applies one change plus its cascade, recomputes the
derived fields (mastery, next review, daily log, streak) and writes the whole document back
in a single call to the persistence port. Mutations hold the store lock from read to write.
"""
from __future__ import annotations

import functools
import json
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from learnflow.errors import ValidationError
from learnflow.scheduling import get_due, next_review_date
from learnflow.utils import get_logger, log_store_mutation
from .models import KnowledgePoint, LearningData, Practice, Topic
from .persistence import PersistencePort

LOG = get_logger()

DATA_KEY = 'learnflow_data'

RECORD_COLLECTIONS = (
    ('topics', 'topics', Topic),
    ('knowledgePoints', 'knowledge_points', KnowledgePoint),
    ('practices', 'practices', Practice),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _clamp_score(score: float) -> int:
    return int(min(100, max(0, round(score))))


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


def load_document(stored: Dict[str, Any]) -> LearningData:
    """Build a document from its stored shape, dropping only the records that cannot be read."""
    doc = {k: v for k, v in stored.items() if v is not None}
    for key, field_name, model in RECORD_COLLECTIONS:
        items = doc.pop(key, doc.pop(field_name, None))
        records = []
        for item in items if isinstance(items, list) else []:
            try:
                records.append(model.model_validate(item))
            except PydanticValidationError as e:
                LOG.warning('stored_record_dropped', extra={'collection': key, 'record_id': item.get('id') if isinstance(item, dict) else None, 'error': str(e)})
        doc[key] = records
    return LearningData.model_validate(doc)


class LearningStore:
    def __init__(self, persistence: PersistencePort, clock: Optional[Callable[[], datetime]] = None, on_save: Optional[Callable[[LearningData], None]] = None):
        self._persistence = persistence
        self._clock = clock or _utcnow
        self.on_save = on_save
        self._lock = threading.RLock()

    def now(self) -> datetime:
        return self._clock()

    # ----- whole document -----

    def get_all(self) -> LearningData:
        with self._lock:
            raw = self._persistence.read(DATA_KEY)
        if not raw:
            return LearningData()
        try:
            stored = json.loads(raw)
            if not isinstance(stored, dict):
                raise ValueError('stored document is not an object')
            return load_document(stored)
        except (ValueError, PydanticValidationError) as e:
            LOG.warning('stored_document_unreadable_reset', extra={'key': DATA_KEY, 'error': str(e)})
            return LearningData()

    def save_all(self, data: Union[LearningData, Dict[str, Any]]) -> LearningData:
        if not isinstance(data, LearningData):
            data = load_document(data)
        with self._lock:
            self._persistence.write(DATA_KEY, json.dumps(data.to_storage(), ensure_ascii=False))
        if self.on_save is not None:
            try:
                self.on_save(data)
            except Exception:
                LOG.exception('sync_notification_failed', exc_info=True)
        return data

    @_locked
    def replace_all(self, data: Union[LearningData, Dict[str, Any]]) -> LearningData:
        saved = self.save_all(data)
        log_store_mutation('replace_all', topics=len(saved.topics), knowledge_points=len(saved.knowledge_points), practices=len(saved.practices))
        return saved

    # ----- derived fields -----

    def _update_daily_log(self, data: LearningData, now: datetime) -> None:
        today = now.astimezone(timezone.utc).date()
        key = today.isoformat()
        data.daily_log[key] = data.daily_log.get(key, 0) + 1
        if data.last_study_date != today:
            if data.last_study_date == today - timedelta(days=1):
                data.streak += 1
            else:
                data.streak = 1
            data.last_study_date = today

    @staticmethod
    def _require_title(title: Optional[str]) -> str:
        if title is None or not str(title).strip():
            raise ValidationError('Title must not be empty')
        return str(title).strip()

    # ----- topics -----

    @_locked
    def add_topic(self, title: str, content: str = '') -> Topic:
        title = self._require_title(title)
        data = self.get_all()
        now = self.now()
        topic = Topic(id=_new_id(), title=title, content=content or '', created_at=now)
        data.topics.append(topic)
        self._update_daily_log(data, now)
        self.save_all(data)
        log_store_mutation('add_topic', topic.id, len(data.topics), len(data.knowledge_points), len(data.practices))
        return topic

    @_locked
    def update_topic(self, topic_id: str, title: str) -> Optional[Topic]:
        title = self._require_title(title)
        data = self.get_all()
        topic = data.find_topic(topic_id)
        if topic is None:
            return None
        topic.title = title
        self.save_all(data)
        log_store_mutation('update_topic', topic_id)
        return topic

    @_locked
    def delete_topic(self, topic_id: str) -> bool:
        data = self.get_all()
        topic = data.find_topic(topic_id)
        if topic is None:
            return False
        points = {k.id: k for k in data.knowledge_points}
        # also drops practices whose point no longer exists
        data.practices = [
            p for p in data.practices
            if p.knowledge_point_id in points and points[p.knowledge_point_id].topic_id != topic_id
        ]
        data.knowledge_points = [k for k in data.knowledge_points if k.topic_id != topic_id]
        data.topics = [t for t in data.topics if t.id != topic_id]
        self.save_all(data)
        log_store_mutation('delete_topic', topic_id, len(data.topics), len(data.knowledge_points), len(data.practices))
        return True

    # ----- knowledge points -----

    @_locked
    def add_knowledge_point(self, topic_id: str, title: str, description: str = '') -> KnowledgePoint:
        title = self._require_title(title)
        data = self.get_all()
        topic = data.find_topic(topic_id)
        if topic is None:
            raise ValidationError(f'Unknown topic: {topic_id}')
        kp = KnowledgePoint(id=_new_id(), topic_id=topic_id, title=title, description=description or '', created_at=self.now())
        data.knowledge_points.append(kp)
        topic.knowledge_point_ids.append(kp.id)
        self.save_all(data)
        log_store_mutation('add_knowledge_point', kp.id, len(data.topics), len(data.knowledge_points), len(data.practices))
        return kp

    @_locked
    def update_knowledge_point(self, kp_id: str, title: str, description: str = '') -> Optional[KnowledgePoint]:
        title = self._require_title(title)
        data = self.get_all()
        kp = data.find_knowledge_point(kp_id)
        if kp is None:
            return None
        kp.title = title
        kp.description = description or ''
        self.save_all(data)
        log_store_mutation('update_knowledge_point', kp_id)
        return kp

    @_locked
    def delete_knowledge_point(self, kp_id: str) -> bool:
        data = self.get_all()
        kp = data.find_knowledge_point(kp_id)
        if kp is None:
            return False
        data.practices = [p for p in data.practices if p.knowledge_point_id != kp_id]
        topic = data.find_topic(kp.topic_id)
        if topic is not None:
            topic.knowledge_point_ids = [i for i in topic.knowledge_point_ids if i != kp_id]
        data.knowledge_points = [k for k in data.knowledge_points if k.id != kp_id]
        self.save_all(data)
        log_store_mutation('delete_knowledge_point', kp_id, len(data.topics), len(data.knowledge_points), len(data.practices))
        return True

    # ----- practice and review -----

    @_locked
    def add_practice(self, kp_id: str, question: str, answer: str, score: float, feedback: Any = None) -> Practice:
        data = self.get_all()
        kp = data.find_knowledge_point(kp_id)
        if kp is None:
            raise ValidationError(f'Unknown knowledge point: {kp_id}')
        now = self.now()
        score = _clamp_score(score)
        practice = Practice(id=_new_id(), knowledge_point_id=kp_id, question=question, answer=answer or '', score=score, feedback=feedback, created_at=now)
        data.practices.append(practice)

        kp.mastery = score
        kp.review_count += 1
        kp.last_review = now
        kp.next_review = next_review_date(kp.review_count, score, now)

        self._update_daily_log(data, now)
        self.save_all(data)
        log_store_mutation('add_practice', practice.id, len(data.topics), len(data.knowledge_points), len(data.practices))
        return practice

    def get_review_due(self, now: Optional[datetime] = None) -> List[KnowledgePoint]:
        return get_due(self.get_all().knowledge_points, now or self.now())

    def upcoming_reviews(self, limit: int = 5) -> List[KnowledgePoint]:
        scheduled = [k for k in self.get_all().knowledge_points if k.next_review is not None]
        scheduled.sort(key=lambda k: k.next_review)
        return scheduled[:limit]

    @_locked
    def skip_review(self, kp_id: str) -> Optional[KnowledgePoint]:
        data = self.get_all()
        kp = data.find_knowledge_point(kp_id)
        if kp is None:
            return None
        kp.next_review = self.now() + timedelta(days=1)
        self.save_all(data)
        log_store_mutation('skip_review', kp_id)
        return kp
