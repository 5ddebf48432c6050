"""AI provider configuration and the bounded call log, both kept in the persistence port."""
from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from learnflow.store.persistence import PersistencePort
from learnflow.utils import get_logger

LOG = get_logger()

AI_CONFIG_KEY = 'learnflow_ai_config'
AI_LOG_KEY = 'learnflow_ai_logs'
AI_LOG_MAX_ENTRIES = 100

PROVIDER_URLS = {
    'openai': 'https://api.openai.com',
    'claude': 'https://api.anthropic.com',
    'gemini': 'https://generativelanguage.googleapis.com',
    'deepseek': 'https://api.deepseek.com',
    'custom': '',
}

PROVIDER_MODELS = {
    'openai': 'gpt-4o-mini',
    'claude': 'claude-sonnet-4-20250514',
    'gemini': 'gemini-2.0-flash',
    'deepseek': 'deepseek-chat',
    'custom': '',
}

DEFAULT_MODEL = 'gpt-4o-mini'

DEFAULT_EXTRACT_PROMPT = """You are a professional learning coach. Extract the core knowledge points from the study material below.

Requirements:
1. Extract the 5-15 most important knowledge points
2. Each knowledge point needs a concise title (at most 30 words) and a detailed description (50-200 words)
3. Descriptions should cover the key concepts, principles and takeaways so they can be used for questions and review
4. Order them logically, from fundamentals to advanced
5. Ignore repeated or trivial information

Return strictly the following JSON, without markdown code fences or any other content:
[{"title": "Knowledge point title", "description": "Detailed description..."}]

Study material:
"""

DEFAULT_EVAL_PROMPT = """You are a Feynman-technique coach. Assess how well the student understands the knowledge point.

Knowledge point title: {{title}}
Knowledge point content: {{description}}
Student answer: {{answer}}

Scoring (100 points total):
1. Core concept coverage (40): does the answer cover the key concepts of the point
2. Own words (20): is it expressed in the student's own words rather than copied
3. Examples and analogies (15): does it use everyday examples or analogies
4. Depth (15): does it show understanding of the underlying principle
5. Structure (10): is the answer clear and logically organized

Return strictly the following JSON, without markdown code fences or any other content:
{"score": 75, "feedback": ["feedback 1", "feedback 2"], "correct": ["strength 1", "strength 2"], "missing": ["missing concept 1", "missing concept 2"]}

The first feedback item is the overall verdict; the rest are concrete suggestions.
correct lists what the answer did well.
missing lists key concepts absent from the answer (at most 5).
"""


class AIConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: str = 'openai'
    base_url: str = ''
    api_key: str = ''
    model: str = ''
    extract_prompt: str = DEFAULT_EXTRACT_PROMPT
    eval_prompt: str = DEFAULT_EVAL_PROMPT

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def resolved_base_url(self) -> str:
        return (self.base_url or PROVIDER_URLS.get(self.provider, '')).rstrip('/')

    def resolved_model(self) -> str:
        return self.model or PROVIDER_MODELS.get(self.provider) or DEFAULT_MODEL

    def public_dict(self) -> Dict[str, Any]:
        d = self.model_dump(by_alias=True)
        key = d.get('apiKey') or ''
        d['apiKey'] = (key[:4] + '***') if key else ''
        return d


class AIConfigStore:
    def __init__(self, persistence: PersistencePort):
        self._persistence = persistence

    def get(self) -> AIConfig:
        raw = self._persistence.read(AI_CONFIG_KEY)
        if not raw:
            return AIConfig()
        try:
            return AIConfig.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            LOG.warning('ai_config_unreadable_reset', extra={'error': str(e)})
            return AIConfig()

    def save(self, config: AIConfig) -> AIConfig:
        self._persistence.write(AI_CONFIG_KEY, json.dumps(config.model_dump(by_alias=True), ensure_ascii=False))
        LOG.info('ai_config_saved', extra={'provider': config.provider, 'model': config.resolved_model()})
        return config

    def is_configured(self) -> bool:
        return self.get().is_configured()


class AICallLog:
    """Newest-first ring buffer of AI call records."""

    def __init__(self, persistence: PersistencePort, max_entries: int = AI_LOG_MAX_ENTRIES):
        self._persistence = persistence
        self.max_entries = max_entries

    def get_all(self) -> List[Dict[str, Any]]:
        raw = self._persistence.read(AI_LOG_KEY)
        if not raw:
            return []
        try:
            logs = json.loads(raw)
        except ValueError:
            return []
        return logs if isinstance(logs, list) else []

    def add(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        logs = self.get_all()
        record = {'id': int(time.time() * 1000), 'time': datetime.now(timezone.utc).isoformat()}
        record.update(entry)
        logs.insert(0, record)
        del logs[self.max_entries:]
        self._persistence.write(AI_LOG_KEY, json.dumps(logs, ensure_ascii=False))
        return record

    def clear(self) -> None:
        self._persistence.delete(AI_LOG_KEY)

    def count(self) -> int:
        return len(self.get_all())
