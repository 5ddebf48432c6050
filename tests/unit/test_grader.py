import pytest

from learnflow.ai import AnswerGrader, calculate_similarity, evaluate_answer_local
from tests.fixtures.mock_openai import MOCK_EVAL_RESPONSE

pytestmark = pytest.mark.unit

TITLE = 'Photosynthesis'
DESCRIPTION = 'Plants convert light energy into chemical energy stored in glucose inside chloroplasts'


def test_similarity_bounds():
    assert calculate_similarity('', '') == 0.0
    assert calculate_similarity('abc', 'abc') == 1.0
    assert calculate_similarity('abc', 'xyz') == 0.0
    assert 0 < calculate_similarity('abcd', 'cdef') < 1


@pytest.mark.parametrize('answer', [
    'x',
    'Plants make food.',
    'For example, a leaf works like a solar panel: it captures light energy and stores it as sugar.\nThat is photosynthesis.',
    DESCRIPTION,
    'word ' * 200,
])
def test_local_score_is_bounded(answer):
    result = evaluate_answer_local(answer, TITLE, DESCRIPTION)
    assert 0 <= result.score <= 100
    assert result.feedback
    assert len(result.missing) <= 5
    assert result.strategy == 'local'


def test_good_answer_outscores_weak_answer():
    good = evaluate_answer_local(
        'For example, think of a leaf as a solar panel: plants capture light energy and store it as chemical energy in glucose.',
        TITLE, DESCRIPTION,
    )
    weak = evaluate_answer_local('It is about plants.', TITLE, DESCRIPTION)
    assert good.score > weak.score
    assert 'Used an example or analogy' in good.correct
    assert any('example or analogy' in f for f in weak.feedback)


def test_copied_description_is_flagged():
    result = evaluate_answer_local(DESCRIPTION, TITLE, DESCRIPTION)
    assert any('own words' in f for f in result.feedback)
    assert 'Explained in your own words' not in result.correct


def test_verdict_comes_first():
    result = evaluate_answer_local('short', TITLE, DESCRIPTION)
    assert result.feedback[0] == 'This needs more study, consider rereading the material'


def test_remote_grading(configured_ai, ai_client, fake_openai):
    fake_openai.reply_with(MOCK_EVAL_RESPONSE)
    evaluation, strategy = AnswerGrader(ai_client).evaluate('Plants use light to make sugar.', TITLE, DESCRIPTION)
    assert strategy == 'remote'
    assert evaluation.score == 82
    assert evaluation.missing == ['chloroplast']
    system_prompt = fake_openai.calls[0]['messages'][0]['content']
    assert 'Knowledge point title: Photosynthesis' in system_prompt
    assert 'Student answer: Plants use light to make sugar.' in system_prompt


def test_remote_score_is_clamped(configured_ai, ai_client, fake_openai):
    fake_openai.reply_with('{"score": 130, "feedback": ["great"]}')
    evaluation, _ = AnswerGrader(ai_client).evaluate('An answer that is long enough', TITLE)
    assert evaluation.score == 100


@pytest.mark.parametrize('reply', ['{"feedback": ["no score"]}', '{"score": "high", "feedback": []}', '{"score": 70}', 'not json'])
def test_invalid_remote_reply_falls_back(configured_ai, ai_client, fake_openai, reply):
    fake_openai.reply_with(reply)
    evaluation, strategy = AnswerGrader(ai_client).evaluate('Plants use light to make sugar.', TITLE, DESCRIPTION)
    assert strategy == 'local'
    assert evaluation.strategy == 'local'
    assert 0 <= evaluation.score <= 100


def test_without_key_grades_locally(ai_client, fake_openai):
    _, strategy = AnswerGrader(ai_client).evaluate('Plants use light to make sugar.', TITLE, DESCRIPTION)
    assert strategy == 'local'
    assert fake_openai.calls == []
