import random
from typing import Optional

from pydantic import BaseModel

from learnflow.scheduling import question_difficulty

QUESTION_TEMPLATES = {
    'easy': [
        'Explain in your own words: what is "{title}"?',
        'Describe your understanding of "{title}" in the simplest language you can',
        'Suppose you had to explain "{title}" to a primary-school student. What would you say?',
    ],
    'medium': [
        'What problem does "{title}" solve? What would happen without it?',
        'Give an everyday example that illustrates how "{title}" works',
        'How does "{title}" relate to something you learned before? Explain the connection',
    ],
    'hard': [
        'What are the limitations or drawbacks of "{title}"? How could they be addressed?',
        'In which situations should "{title}" not be used? Why?',
        'How would you apply "{title}" to a completely new field?',
    ],
}


class PracticeQuestion(BaseModel):
    knowledge_point_id: str
    knowledge_point_title: str
    difficulty: str
    question: str


def generate_question(kp, difficulty: Optional[str] = None, rng: Optional[random.Random] = None) -> PracticeQuestion:
    """Pick a Feynman-style question for ``kp``; difficulty defaults to one derived from its mastery."""
    difficulty = difficulty or question_difficulty(kp.mastery)
    templates = QUESTION_TEMPLATES.get(difficulty) or QUESTION_TEMPLATES['easy']
    template = (rng or random).choice(templates)
    return PracticeQuestion(
        knowledge_point_id=kp.id,
        knowledge_point_title=kp.title,
        difficulty=difficulty if difficulty in QUESTION_TEMPLATES else 'easy',
        question=template.format(title=kp.title),
    )
