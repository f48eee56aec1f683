"""Tests for RetryPolicy."""
import pytest

from market_alerts.core.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, exc=ValueError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


def test_succeeds_after_transient_failures():
    sleeps = []
    func = Flaky(failures=2)

    result = RetryPolicy(max_attempts=3, base_delay=5.0).call(func, sleep=sleeps.append)

    assert result == "ok"
    assert func.calls == 3
    assert sleeps == [5.0, 10.0]


def test_reraises_last_error_without_final_sleep():
    sleeps = []
    func = Flaky(failures=5)

    with pytest.raises(ValueError, match="failure 3"):
        RetryPolicy(max_attempts=3, base_delay=1.0).call(func, sleep=sleeps.append)

    assert func.calls == 3
    assert sleeps == [1.0, 2.0]


def test_exponential_backoff_delays():
    policy = RetryPolicy(max_attempts=4, base_delay=2.0, backoff="exponential")

    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_unlisted_exception_is_not_retried():
    func = Flaky(failures=1, exc=KeyError)

    with pytest.raises(KeyError):
        RetryPolicy(max_attempts=3).call(func, retry_on=(ValueError,), sleep=lambda _: None)

    assert func.calls == 1


def test_arguments_are_forwarded():
    seen = []

    def func(a, b=None):
        seen.append((a, b))
        return a

    assert RetryPolicy().call(func, 1, b=2, sleep=lambda _: None) == 1
    assert seen == [(1, 2)]
