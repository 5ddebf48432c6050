"""Result values and the primary/fallback combinator used by the AI paths.

Remote strategies return a ``Result`` instead of raising, so callers compose them with
``with_fallback`` rather than wrapping every call site in try/except.
"""
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from learnflow.errors import ConfigurationMissing, ParseError, RemoteAPIError
from .logger import get_logger, log_ai_fallback

LOG = get_logger()

T = TypeVar('T')

RECOVERABLE_ERRORS: Tuple[Type[Exception], ...] = (ConfigurationMissing, RemoteAPIError, ParseError)


@dataclass
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> 'Result[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> 'Result[T]':
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


def attempt(fn: Callable[..., T], *args, catch: Tuple[Type[Exception], ...] = RECOVERABLE_ERRORS, **kwargs) -> Result[T]:
    """Run ``fn`` and capture the listed exceptions as a failed Result.

    Anything outside ``catch`` propagates unchanged.
    """
    try:
        return Result.success(fn(*args, **kwargs))
    except catch as e:
        return Result.failure(e)


def with_fallback(operation: str, primary: Callable[[], Result[T]], fallback: Callable[[], T], primary_name: str = 'remote', fallback_name: str = 'local') -> Tuple[T, str]:
    """Return the primary value when it succeeds, else the fallback's.

    The second element names the strategy that produced the value.
    """
    res = primary()
    if res.ok:
        log_ai_fallback(operation, [primary_name], primary_name)
        return res.value, primary_name
    LOG.warning('primary_strategy_failed', extra={'operation': operation, 'error': str(res.error), 'error_type': type(res.error).__name__})
    value = fallback()
    log_ai_fallback(operation, [primary_name, fallback_name], fallback_name, error=str(res.error))
    return value, fallback_name
