"""Utility subpackage: logging and result helpers"""

from .logger import (
	get_logger,
	log_request,
	log_error,
	log_llm_call,
	log_ai_fallback,
	log_store_mutation,
	log_sync_run,
	set_request_context,
	get_request_context,
)
from .result import Result, attempt, with_fallback, RECOVERABLE_ERRORS

__all__ = [
	'get_logger',
	'log_request',
	'log_error',
	'log_llm_call',
	'log_ai_fallback',
	'log_store_mutation',
	'log_sync_run',
	'set_request_context',
	'get_request_context',
	'Result',
	'attempt',
	'with_fallback',
	'RECOVERABLE_ERRORS',
]
