import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    ctx = get_request_context()
    record.request_id = ctx.get('request_id')
    record.user_id = ctx.get('user_id')
    return True


def get_logger(name: str = 'learnflow'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    # empty LOG_FILE_PATH disables the rotating file handlers
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', 'logs')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if LOG_FILE_PATH:
        log_path = pathlib.Path(LOG_FILE_PATH)
        if not log_path.is_absolute():
            log_path = pathlib.Path(os.getcwd()) / log_path
        log_path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        combined.setFormatter(fmt)
        logger.addHandler(combined)

        errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(fmt)
        logger.addHandler(errors)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)

    logging.captureWarnings(True)

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_error(error: Exception, context: dict = None):
    logger = get_logger()
    logger.exception('error', exc_info=True, extra=context or {})


def log_llm_call(log_type: str, provider: str, model: str, status: str, input_length: int, output_length: int, duration_ms: float):
    logger = get_logger()
    logger.info('llm_call', extra={
        'log_type': log_type,
        'provider': provider,
        'model': model,
        'status': status,
        'input_length': input_length,
        'output_length': output_length,
        'duration_ms': duration_ms,
    })


def log_ai_fallback(operation: str, chain: list, final_strategy: str, error: str = None):
    logger = get_logger()
    logger.info('ai_fallback_chain', extra={
        'operation': operation,
        'chain': chain,
        'final_strategy': final_strategy,
        'error': error,
    })


def log_store_mutation(operation: str, entity_id: str = None, topics: int = 0, knowledge_points: int = 0, practices: int = 0):
    logger = get_logger()
    logger.info('store_mutation', extra={
        'operation': operation,
        'entity_id': entity_id,
        'topic_count': topics,
        'knowledge_point_count': knowledge_points,
        'practice_count': practices,
    })


def log_sync_run(direction: str, topics: int, knowledge_points: int, practices: int, duration_ms: float, silent: bool = False):
    logger = get_logger()
    logger.info('table_sync', extra={
        'direction': direction,
        'topic_count': topics,
        'knowledge_point_count': knowledge_points,
        'practice_count': practices,
        'duration_ms': duration_ms,
        'silent': silent,
    })
