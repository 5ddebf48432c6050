"""Answer grading: the configured model first, a keyword-overlap heuristic as fallback."""
from __future__ import annotations

import re
from typing import List, Tuple

from pydantic import BaseModel, Field

from learnflow.errors import ParseError
from learnflow.utils import attempt, get_logger, with_fallback
from .client import AIClient
from .parsing import parse_ai_json

LOG = get_logger()

MAX_MISSING = 5
SIMILARITY_COPY_THRESHOLD = 0.7

_WORD_SPLIT_RE = re.compile(r'[\s，、。！？；：“”‘’（）,.!?;:()"\']+')
_EXAMPLE_RE = re.compile(r'比如|例如|就像|类似于|可以理解为|打个比方|相当于|for example|for instance|such as|e\.g\.|similar to|just like|imagine|think of it as', re.IGNORECASE)
_STRUCTURE_RE = re.compile(r'[：:;；]|第?[一二三1-9]')


class Evaluation(BaseModel):
    score: int = Field(0, ge=0, le=100)
    feedback: List[str] = Field(default_factory=list)
    correct: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    strategy: str = 'local'


def calculate_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the two texts' character sets."""
    s1, s2 = set(text1), set(text2)
    union = s1 | s2
    if not union:
        return 0.0
    return len(s1 & s2) / len(union)


def _keywords(text: str) -> List[str]:
    return [w for w in _WORD_SPLIT_RE.split(text) if len(w) > 1]


def evaluate_answer_local(answer: str, title: str, description: str = '') -> Evaluation:
    score = 0
    feedback: List[str] = []
    correct: List[str] = []
    missing: List[str] = []

    n = len(answer)
    if 30 <= n <= 500:
        score += 20
    elif n > 500:
        score += 15
    else:
        score += int(n / 30 * 10)

    # unique keywords in first-seen order
    keywords = list(dict.fromkeys(_keywords(description or '') + _keywords(title)))
    lowered = answer.lower()
    matched = 0
    for kw in keywords:
        if kw.lower() in lowered:
            matched += 1
            correct.append(kw)
        elif len(kw) >= 3:
            missing.append(kw)
    coverage = matched / len(keywords) if keywords else 0
    score += int(coverage * 40)

    if description:
        if calculate_similarity(answer, description) < SIMILARITY_COPY_THRESHOLD:
            score += 20
            correct.append('Explained in your own words')
        else:
            score += 5
            feedback.append('Try to explain more in your own words instead of repeating the source text')
    else:
        score += 15

    if _EXAMPLE_RE.search(answer):
        score += 15
        correct.append('Used an example or analogy')
    else:
        feedback.append('Try an everyday example or analogy, it deepens understanding')

    if '\n' in answer or _STRUCTURE_RE.search(answer):
        score += 5
        correct.append('Answer is organized and structured')

    score = min(100, max(0, score))

    if score >= 85:
        verdict = 'Excellent! You understand this knowledge point deeply'
    elif score >= 70:
        verdict = 'Good understanding, a few details could be added'
    elif score >= 50:
        verdict = 'You grasp the basic idea but need to think it through further'
    else:
        verdict = 'This needs more study, consider rereading the material'
    feedback.insert(0, verdict)

    if 0 < len(missing) <= MAX_MISSING:
        feedback.append('Key concepts worth a look: ' + ', '.join(missing))

    return Evaluation(score=score, feedback=feedback, correct=correct, missing=missing[:MAX_MISSING], strategy='local')


class AnswerGrader:
    def __init__(self, client: AIClient):
        self.client = client

    def evaluate_remote(self, answer: str, title: str, description: str = '') -> Evaluation:
        config = self.client.config_store.get()
        prompt = (
            config.eval_prompt
            .replace('{{title}}', title)
            .replace('{{description}}', description or 'No detailed description')
            .replace('{{answer}}', answer)
        )
        user_content = f'Knowledge point: {title}\nDescription: {description or ""}\n\nStudent answer: {answer}'
        result = parse_ai_json(self.client.call(prompt, user_content, 'eval'))
        if not isinstance(result, dict):
            raise ParseError('AI evaluation is not an object')
        raw_score = result.get('score')
        if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)) or not isinstance(result.get('feedback'), list):
            raise ParseError('AI evaluation is missing score or feedback')
        return Evaluation(
            score=min(100, max(0, round(raw_score))),
            feedback=[str(f) for f in result['feedback']],
            correct=[str(c) for c in (result.get('correct') or [])],
            missing=[str(m) for m in (result.get('missing') or [])][:MAX_MISSING],
            strategy='remote',
        )

    def evaluate(self, answer: str, title: str, description: str = '') -> Tuple[Evaluation, str]:
        return with_fallback(
            'evaluate_answer',
            lambda: attempt(self.evaluate_remote, answer, title, description),
            lambda: evaluate_answer_local(answer, title, description),
        )
