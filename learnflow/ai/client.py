"""Chat client for the configured AI provider.

Claude speaks its own messages API over plain HTTP; every other provider (OpenAI, DeepSeek,
Gemini's OpenAI-compatible endpoint, custom relays) goes through the OpenAI SDK with a
custom ``base_url``.
"""
from __future__ import annotations

import os
import time
from typing import Any, Callable, Dict, Optional

import openai
import requests
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from learnflow.errors import ConfigurationMissing, ParseError, RemoteAPIError
from learnflow.utils import get_logger, log_llm_call
from .config import AICallLog, AIConfig, AIConfigStore

LOG = get_logger()

AI_TEMPERATURE = float(os.getenv('AI_TEMPERATURE', '0.3'))
AI_MAX_TOKENS = int(os.getenv('AI_MAX_TOKENS', '4000'))
AI_TIMEOUT = float(os.getenv('AI_TIMEOUT', '60'))
# one attempt means no automatic retry
AI_RETRY_ATTEMPTS = int(os.getenv('AI_RETRY_ATTEMPTS', '1'))
AI_LOG_PROMPT_CHARS = 500
ANTHROPIC_VERSION = '2023-06-01'


class AIClient:
    def __init__(self, config_store: AIConfigStore, call_log: AICallLog, openai_factory: Callable[..., Any] = None, http_post: Callable[..., Any] = None):
        self.config_store = config_store
        self.call_log = call_log
        self._openai_factory = openai_factory or OpenAI
        self._http_post = http_post or requests.post

    def _api_url(self, config: AIConfig) -> str:
        base = config.resolved_base_url()
        if config.provider == 'claude':
            return f'{base}/v1/messages'
        return f'{base}/v1/chat/completions'

    @retry(stop=stop_after_attempt(AI_RETRY_ATTEMPTS), wait=wait_exponential(multiplier=1, min=1, max=10), retry=retry_if_exception_type(RemoteAPIError), reraise=True)
    def _call_openai_compatible(self, config: AIConfig, system_prompt: str, user_content: str) -> str:
        client = self._openai_factory(api_key=config.api_key, base_url=f'{config.resolved_base_url()}/v1', timeout=AI_TIMEOUT, max_retries=0)
        try:
            resp = client.chat.completions.create(
                model=config.resolved_model(),
                messages=[
                    {'role': 'system', 'content': system_prompt},
                    {'role': 'user', 'content': user_content},
                ],
                temperature=AI_TEMPERATURE,
                max_tokens=AI_MAX_TOKENS,
            )
        except openai.APIStatusError as e:
            raise RemoteAPIError(f'API request failed ({e.status_code}): {str(e)[:200]}', status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise RemoteAPIError(f'API request failed: {str(e)[:200]}') from e
        try:
            return resp.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ParseError('Unexpected chat completion shape') from e

    @retry(stop=stop_after_attempt(AI_RETRY_ATTEMPTS), wait=wait_exponential(multiplier=1, min=1, max=10), retry=retry_if_exception_type(RemoteAPIError), reraise=True)
    def _call_claude(self, config: AIConfig, system_prompt: str, user_content: str) -> str:
        try:
            resp = self._http_post(
                self._api_url(config),
                headers={
                    'Content-Type': 'application/json',
                    'x-api-key': config.api_key,
                    'anthropic-version': ANTHROPIC_VERSION,
                },
                json={
                    'model': config.resolved_model(),
                    'system': system_prompt,
                    'messages': [{'role': 'user', 'content': user_content}],
                    'max_tokens': AI_MAX_TOKENS,
                    'temperature': AI_TEMPERATURE,
                },
                timeout=AI_TIMEOUT,
            )
        except requests.RequestException as e:
            raise RemoteAPIError(f'API request failed: {e}') from e
        if not resp.ok:
            raise RemoteAPIError(f'API request failed ({resp.status_code}): {resp.text[:200]}', status_code=resp.status_code)
        try:
            return resp.json()['content'][0]['text']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError('Unexpected messages API response shape') from e

    def call(self, system_prompt: str, user_content: str, log_type: str = 'api') -> str:
        config = self.config_store.get()
        if not config.is_configured():
            raise ConfigurationMissing('No AI API key configured')

        model = config.resolved_model()
        entry: Dict[str, Any] = {
            'type': log_type,
            'provider': config.provider,
            'model': model,
            'apiUrl': self._api_url(config),
            'systemPrompt': system_prompt[:AI_LOG_PROMPT_CHARS],
            'userInput': user_content,
            'inputLength': len(user_content),
        }
        start = time.time()
        try:
            if config.provider == 'claude':
                result = self._call_claude(config, system_prompt, user_content)
            else:
                result = self._call_openai_compatible(config, system_prompt, user_content)
            result = result or ''
        except (RemoteAPIError, ParseError) as e:
            duration_ms = int((time.time() - start) * 1000)
            entry.update({'status': 'error', 'duration': duration_ms, 'error': str(e)})
            self.call_log.add(entry)
            log_llm_call(log_type, config.provider, model, 'error', len(user_content), 0, duration_ms)
            LOG.warning('ai_call_failed', extra={'log_type': log_type, 'provider': config.provider, 'error': str(e)})
            raise

        duration_ms = int((time.time() - start) * 1000)
        entry.update({'status': 'success', 'fullResponse': result, 'outputLength': len(result), 'duration': duration_ms})
        self.call_log.add(entry)
        log_llm_call(log_type, config.provider, model, 'success', len(user_content), len(result), duration_ms)
        return result
