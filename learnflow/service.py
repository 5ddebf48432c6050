"""Study workflows on top of the store: analyze material, practice, review and the dashboard."""
from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from learnflow.ai import AnswerGrader, KnowledgeExtractor, generate_question
from learnflow.ai.questions import PracticeQuestion
from learnflow.errors import ValidationError
from learnflow.scheduling import days_overdue, mastery_level
from learnflow.store import LearningStore
from learnflow.utils import get_logger

LOG = get_logger()

DEFAULT_TOPIC_TITLE = 'Untitled study'
MIN_CONTENT_LENGTH = 50
MIN_ANSWER_LENGTH = 10
HEATMAP_DAYS = 364
RECENT_PRACTICES = 10


def heatmap_level(count: int) -> int:
    if count >= 8:
        return 4
    if count >= 5:
        return 3
    if count >= 3:
        return 2
    if count >= 1:
        return 1
    return 0


class StudyService:
    def __init__(self, store: LearningStore, extractor: KnowledgeExtractor, grader: AnswerGrader, rng: Optional[random.Random] = None):
        self.store = store
        self.extractor = extractor
        self.grader = grader
        self.rng = rng

    def analyze_material(self, title: Optional[str], content: Optional[str]) -> Dict[str, Any]:
        title = (title or '').strip() or DEFAULT_TOPIC_TITLE
        content = (content or '').strip()
        if any(t.title == title for t in self.store.get_all().topics):
            raise ValidationError('A topic with this title already exists')
        if not content:
            raise ValidationError('Content must not be empty')
        if len(content) < MIN_CONTENT_LENGTH:
            raise ValidationError(f'Content is too short, enter at least {MIN_CONTENT_LENGTH} characters')

        points, strategy = self.extractor.extract(content)
        topic = self.store.add_topic(title, content)
        saved = [self.store.add_knowledge_point(topic.id, p.title, p.description) for p in points]
        LOG.info('material_analyzed', extra={'topic_id': topic.id, 'knowledge_point_count': len(saved), 'strategy': strategy})
        return {'topic': topic, 'knowledge_points': saved, 'strategy': strategy}

    def start_practice(self, kp_ids: Optional[Iterable[str]] = None) -> List[PracticeQuestion]:
        points = self.store.get_all().knowledge_points
        if kp_ids is not None:
            wanted = set(kp_ids)
            points = [k for k in points if k.id in wanted]
        return [generate_question(kp, rng=self.rng) for kp in points]

    def submit_answer(self, kp_id: str, answer: Optional[str], question: Optional[str] = None) -> Dict[str, Any]:
        answer = (answer or '').strip()
        if not answer:
            raise ValidationError('Write down your understanding first')
        if len(answer) < MIN_ANSWER_LENGTH:
            raise ValidationError('Answer is too short, try explaining a bit more')
        kp = self.store.get_all().find_knowledge_point(kp_id)
        if kp is None:
            raise ValidationError(f'Unknown knowledge point: {kp_id}')

        evaluation, _ = self.grader.evaluate(answer, kp.title, kp.description)
        practice = self.store.add_practice(kp_id, question or kp.title, answer, evaluation.score, evaluation.model_dump())
        updated = self.store.get_all().find_knowledge_point(kp_id)
        return {'practice': practice, 'evaluation': evaluation, 'knowledge_point': updated}

    def practice_history(self) -> List[Dict[str, Any]]:
        data = self.store.get_all()
        groups: Dict[str, List[Dict[str, Any]]] = {}
        for p in data.practices:
            kp = data.find_knowledge_point(p.knowledge_point_id)
            if kp is None:
                continue
            topic = data.find_topic(kp.topic_id)
            groups.setdefault(topic.title if topic else 'Uncategorized', []).append({'practice': p, 'knowledge_point_title': kp.title})
        # newest first within each topic
        return [{'topic': name, 'count': len(items), 'items': list(reversed(items))} for name, items in groups.items()]

    def review_queue(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self.store.now()
        due = self.store.get_review_due(now)
        return {
            'due': [{'knowledge_point': kp, 'days_overdue': days_overdue(kp.next_review, now), 'level': mastery_level(kp.mastery)} for kp in due],
            'upcoming': [] if due else self.store.upcoming_reviews(),
        }

    def dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self.store.now()
        data = self.store.get_all()
        today = now.astimezone(timezone.utc).date()
        heatmap = []
        for i in range(HEATMAP_DAYS - 1, -1, -1):
            day = (today - timedelta(days=i)).isoformat()
            count = data.daily_log.get(day, 0)
            heatmap.append({'date': day, 'count': count, 'level': heatmap_level(count)})
        recent = []
        for p in reversed(data.practices[-RECENT_PRACTICES:]):
            kp = data.find_knowledge_point(p.knowledge_point_id)
            recent.append({'id': p.id, 'title': kp.title if kp else p.question, 'score': p.score, 'created_at': p.created_at})
        return {
            'total_topics': len(data.topics),
            'total_knowledge_points': len(data.knowledge_points),
            'total_practices': len(data.practices),
            'streak': data.streak,
            'due_count': len(self.store.get_review_due(now)),
            'heatmap': heatmap,
            'recent': recent,
        }
