"""Tests for rate limit classification and backoff."""

from email.utils import format_datetime
from datetime import datetime, timedelta, timezone

import pytest

from tempo_collector.rate_limit import (
    calculate_exponential_backoff,
    get_retry_after_ms,
    is_rate_limit_error,
)
from tempo_collector.rpc import RPCError


class TestIsRateLimitError:
    @pytest.mark.parametrize(
        "message",
        ["Rate limit exceeded", "HTTP 429: slow down", "Too Many Requests", "request limit exceeded"],
    )
    def test_message_indicators(self, message):
        assert is_rate_limit_error(Exception(message)) is True

    def test_status_attribute(self):
        assert is_rate_limit_error(RPCError("busy", status=429)) is True

    def test_wrapped_cause(self):
        try:
            try:
                raise RPCError("upstream", status=429)
            except RPCError as inner:
                raise RuntimeError("fetch failed") from inner
        except RuntimeError as outer:
            assert is_rate_limit_error(outer) is True

    def test_other_errors(self):
        assert is_rate_limit_error(RPCError("execution reverted", code=3)) is False
        assert is_rate_limit_error(RPCError("HTTP 500", status=500)) is False
        assert is_rate_limit_error(None) is False


class TestRetryAfter:
    def test_seconds(self):
        error = RPCError("HTTP 429", status=429, headers={"Retry-After": "7"})
        assert get_retry_after_ms(error) == 7000

    def test_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=30)
        error = RPCError("HTTP 429", status=429, headers={"retry-after": format_datetime(when, usegmt=True)})
        delay = get_retry_after_ms(error)
        assert 20_000 <= delay <= 31_000

    def test_missing_or_invalid(self):
        assert get_retry_after_ms(RPCError("HTTP 429", status=429)) is None
        assert get_retry_after_ms(RPCError("x", headers={"retry-after": "soon"})) is None


class TestExponentialBackoff:
    def test_first_attempt_bounds(self):
        for _ in range(200):
            assert 1000 <= calculate_exponential_backoff(0) < 1300

    def test_never_exceeds_cap(self):
        for attempt in range(0, 100):
            assert calculate_exponential_backoff(attempt) <= 60000

    def test_grows_with_attempt(self):
        # minimum of attempt n+1 is at least the maximum of attempt n until the cap
        assert min(calculate_exponential_backoff(1) for _ in range(50)) >= 2000
        assert min(calculate_exponential_backoff(3) for _ in range(50)) >= 8000
        assert min(calculate_exponential_backoff(10) for _ in range(50)) == 60000
