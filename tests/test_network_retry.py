"""Retry policy for provider calls."""

import threading

import pytest

from test_common import *
from src.core.errors import ProviderError, RateLimitError
from src.processors.network_retry import MAX_JITTER_SECONDS, NetworkRetry


class Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestRun:
    def test_success_after_transient_errors(self):
        func = Flaky(ConnectionError('reset'), ProviderError('bad gateway', status_code=502), 'ok')
        assert NetworkRetry.run(func, retries=3) == 'ok'
        assert func.calls == 3

    def test_rate_limit_is_retried(self):
        func = Flaky(RateLimitError('slow'), 'ok')
        assert NetworkRetry.run(func, retries=2) == 'ok'

    def test_client_error_raises_immediately(self):
        func = Flaky(ProviderError('forbidden', status_code=403), 'never')
        with pytest.raises(ProviderError):
            NetworkRetry.run(func, retries=5)
        assert func.calls == 1

    def test_exhausted_attempts_reraise(self):
        func = Flaky(ConnectionError('a'), ConnectionError('b'))
        with pytest.raises(ConnectionError, match='b'):
            NetworkRetry.run(func, retries=2)

    def test_timeout_gets_context(self):
        func = Flaky(TimeoutError('slow socket'))
        with pytest.raises(TimeoutError, match='Page ABC timeout'):
            NetworkRetry.run(func, retries=1, context='Page ABC')

    def test_cancel_stops_retrying(self):
        event = threading.Event()
        event.set()
        func = Flaky(ConnectionError('reset'), 'ok')
        with pytest.raises(ConnectionError):
            NetworkRetry.run(func, retries=3, cancel_event=event)
        assert func.calls == 1


class TestBackoff:
    def test_exponential_and_capped(self):
        assert 1.0 <= NetworkRetry.backoff_delay(0, delay=1, max_delay=10) <= 1.0 + MAX_JITTER_SECONDS
        assert 4.0 <= NetworkRetry.backoff_delay(2, delay=1, max_delay=10) <= 4.0 + MAX_JITTER_SECONDS
        assert NetworkRetry.backoff_delay(10, delay=1, max_delay=10) <= 10 + MAX_JITTER_SECONDS

    def test_retry_after_wins(self):
        assert NetworkRetry.backoff_delay(3, exc=RateLimitError('slow', retry_after=7)) == 7.0


def test_sleeps_outside_test_context(monkeypatch):
    import src.processors.network_retry as network_retry

    slept = []
    monkeypatch.setattr(network_retry, 'get_run_context', lambda: 'cli')
    monkeypatch.setattr(NetworkRetry, 'sleep', staticmethod(slept.append))
    func = Flaky(RateLimitError('slow', retry_after=2), 'ok')
    assert NetworkRetry.run(func, retries=2) == 'ok'
    assert slept == [2.0]
