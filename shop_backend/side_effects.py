"""
Side effects that must never block or fail the request that triggered them.

`dispatch` hands work to a process-wide thread pool (fire-and-forget).
`BestEffort` runs a downstream call inline but logs and swallows its failure,
so the primary operation still completes. Neither retries: downstream systems
reconcile on their own.
"""
import logging
from concurrent.futures import ThreadPoolExecutor

from django.conf import settings

logger = logging.getLogger(__name__)

_executor = None


def _get_executor():
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=settings.BACKGROUND_WORKERS,
            thread_name_prefix='background',
        )
    return _executor


def _run_logged(func, description, args, kwargs):
    try:
        func(*args, **kwargs)
    except Exception as e:
        logger.error(f"Background task '{description}' failed: {e}")
        logger.exception(e)


def dispatch(func, *args, description=None, **kwargs):
    """
    Runs `func(*args, **kwargs)` without blocking the caller.

    Failures are logged and never reach the caller. With
    BACKGROUND_TASKS_INLINE enabled the call runs synchronously under the same
    contract.
    """
    description = description or getattr(func, '__name__', repr(func))
    if settings.BACKGROUND_TASKS_INLINE:
        _run_logged(func, description, args, kwargs)
        return None
    return _get_executor().submit(_run_logged, func, description, args, kwargs)


class BestEffort:
    """
    Compensating-action runner: attempt, log on failure, never propagate.
    """

    def __init__(self, log=None):
        self.log = log or logger

    def run(self, description, func, *args, **kwargs) -> bool:
        try:
            func(*args, **kwargs)
            return True
        except Exception as e:
            self.log.error(f"{description} failed: {e}")
            return False
