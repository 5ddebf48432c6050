"""
AI provider glue: configuration, call log, chat client, knowledge extraction,
question generation and answer grading with local fallbacks.
"""
from .config import AIConfig, AIConfigStore, AICallLog, PROVIDER_URLS, PROVIDER_MODELS, DEFAULT_EXTRACT_PROMPT, DEFAULT_EVAL_PROMPT
from .client import AIClient
from .parsing import parse_ai_json
from .extractor import KnowledgeExtractor, ExtractedPoint, extract_knowledge_points_local
from .grader import AnswerGrader, Evaluation, evaluate_answer_local, calculate_similarity
from .questions import PracticeQuestion, generate_question

__all__ = [
	'AIConfig', 'AIConfigStore', 'AICallLog', 'PROVIDER_URLS', 'PROVIDER_MODELS', 'DEFAULT_EXTRACT_PROMPT', 'DEFAULT_EVAL_PROMPT',
	'AIClient', 'parse_ai_json',
	'KnowledgeExtractor', 'ExtractedPoint', 'extract_knowledge_points_local',
	'AnswerGrader', 'Evaluation', 'evaluate_answer_local', 'calculate_similarity',
	'PracticeQuestion', 'generate_question',
]
