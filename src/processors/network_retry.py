"""Retry helper for provider calls.

Retries any exception except non-retryable ProviderErrors, sleeping with
exponential backoff capped at ``max_delay`` plus a little jitter. A
RateLimitError carrying ``retry_after`` sleeps exactly that long instead.
"""

import random
import time

from src.core.errors import ProviderError, RateLimitError
from src.utils.constants import API_RETRY_BASE_DELAY, API_RETRY_MAX_ATTEMPTS, API_RETRY_MAX_DELAY
from src.utils.logger import get_run_context, logger

MAX_JITTER_SECONDS = 0.25


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, ProviderError):
        return exc.status_code is not None and exc.status_code >= 500
    return True


class NetworkRetry:
    sleep = staticmethod(time.sleep)

    @staticmethod
    def backoff_delay(attempt, delay=API_RETRY_BASE_DELAY, backoff=2, max_delay=API_RETRY_MAX_DELAY, exc=None):
        retry_after = getattr(exc, 'retry_after', None)
        if retry_after is not None and retry_after >= 0:
            return float(retry_after)
        return min(delay * (backoff ** attempt), max_delay) + random.uniform(0, MAX_JITTER_SECONDS)

    @classmethod
    def run(cls, func, retries=API_RETRY_MAX_ATTEMPTS, delay=API_RETRY_BASE_DELAY, backoff=2,
            context="Network", max_delay=API_RETRY_MAX_DELAY, cancel_event=None):
        if get_run_context() == 'test':
            delay = 0
            max_delay = 0
        for i in range(retries):
            try:
                return func()
            except Exception as e:
                if i == retries - 1 or not _is_retryable(e):
                    if isinstance(e, TimeoutError):
                        raise TimeoutError(f"{context} timeout: {e}")
                    raise
                if cancel_event is not None and cancel_event.is_set():
                    raise
                wait = cls.backoff_delay(i, delay, backoff, max_delay, e) if max_delay else 0
                logger.debug(f"{context} attempt {i + 1}/{retries} failed ({e}); retrying in {wait:.2f}s")
                if wait:
                    cls.sleep(wait)
