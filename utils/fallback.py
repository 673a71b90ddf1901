from typing import TypeVar, Callable
from functools import wraps

from utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar('T')


def with_fallback(
    fallback_func: Callable[..., T],
    exception_types: tuple = (Exception,),
    log_errors: bool = True
) -> Callable:
    """Answer with ``fallback_func(*args, **kwargs)`` when the wrapped call fails.

    Used on the fail-open surface: recommendation, quality assessment and
    ingestion must never fail the generation request that triggered them.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except exception_types as e:
                if log_errors:
                    logger.warning(
                        f"Function {func.__name__} failed, using fallback",
                        extra={
                            "function": func.__name__,
                            "error": str(e),
                            "error_type": type(e).__name__,
                            "fallback": fallback_func.__name__
                        },
                        exc_info=True
                    )
                return fallback_func(*args, **kwargs)
        return wrapper
    return decorator


def log_and_ignore(operation: str) -> Callable:
    """Fire-and-forget ingestion: failures are logged and swallowed, result is None."""
    def _ignore(*args, **kwargs) -> None:
        return None

    _ignore.__name__ = f"ignore_{operation}"
    return with_fallback(_ignore)
