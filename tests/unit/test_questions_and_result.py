import random
import pytest
from types import SimpleNamespace

from learnflow.ai import generate_question
from learnflow.ai.questions import QUESTION_TEMPLATES
from learnflow.errors import ParseError, RemoteAPIError
from learnflow.utils import Result, attempt, with_fallback

pytestmark = pytest.mark.unit


@pytest.mark.parametrize('mastery,difficulty', [(10, 'easy'), (55, 'medium'), (90, 'hard')])
def test_question_difficulty_follows_mastery(mastery, difficulty):
    kp = SimpleNamespace(id='k1', title='Entropy', mastery=mastery)
    q = generate_question(kp, rng=random.Random(1))
    assert q.difficulty == difficulty
    assert q.knowledge_point_id == 'k1'
    assert q.question in [t.format(title='Entropy') for t in QUESTION_TEMPLATES[difficulty]]


def test_explicit_difficulty_overrides_mastery():
    kp = SimpleNamespace(id='k1', title='Entropy', mastery=0)
    assert generate_question(kp, difficulty='hard').difficulty == 'hard'


def test_attempt_captures_recoverable_errors():
    def fail():
        raise RemoteAPIError('down', status_code=503)

    res = attempt(fail)
    assert not res.ok
    assert isinstance(res.error, RemoteAPIError)
    with pytest.raises(RemoteAPIError):
        res.unwrap()
    assert attempt(lambda x: x * 2, 4).unwrap() == 8


def test_attempt_lets_programming_errors_through():
    with pytest.raises(ZeroDivisionError):
        attempt(lambda: 1 / 0)


def test_with_fallback_reports_strategy():
    value, strategy = with_fallback('op', lambda: Result.success('remote value'), lambda: 'local value')
    assert (value, strategy) == ('remote value', 'remote')

    called = []
    value, strategy = with_fallback('op', lambda: Result.failure(ParseError('bad')), lambda: called.append(1) or 'local value')
    assert (value, strategy) == ('local value', 'local')
    assert called == [1]
