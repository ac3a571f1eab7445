"""
Rate limit helpers for callers of the chain data source.

The scheduling harness uses these to decide whether a failure is a rate
limit and how long to wait before the next attempt.
"""

import random
import time
from email.utils import parsedate_to_datetime
from typing import Any, Optional

RATE_LIMIT_INDICATORS = (
    "rate limit",
    "429",
    "too many requests",
    "request limit exceeded",
)


def _status_of(obj: Any) -> Optional[int]:
    if obj is None:
        return None
    for attr in ("status", "status_code", "statusCode"):
        value = getattr(obj, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_rate_limit_error(error: Optional[BaseException]) -> bool:
    """Check the message, the status and any wrapped cause for a rate limit."""
    if error is None:
        return False

    message = str(error).lower()
    if any(indicator in message for indicator in RATE_LIMIT_INDICATORS):
        return True

    for candidate in (error, error.__cause__, getattr(error, "response", None)):
        if _status_of(candidate) == 429:
            return True

    return False


def _headers_of(error: BaseException) -> dict:
    for candidate in (error, getattr(error, "response", None), error.__cause__):
        headers = getattr(candidate, "headers", None)
        if headers:
            return {str(k).lower(): v for k, v in dict(headers).items()}
    return {}


def get_retry_after_ms(error: Optional[BaseException]) -> Optional[int]:
    """
    Read a Retry-After header from the error, in milliseconds.

    The header may be delta seconds or an HTTP date.
    """
    if error is None:
        return None

    retry_after = _headers_of(error).get("retry-after")
    if not retry_after:
        return None

    retry_after = str(retry_after).strip()
    if retry_after.isdigit():
        return int(retry_after) * 1000

    try:
        when = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    return max(0, int(when.timestamp() * 1000 - time.time() * 1000))


def calculate_exponential_backoff(
    attempt: int,
    base_delay_ms: int = 1000,
    max_delay_ms: int = 60000,
) -> int:
    """
    Exponential backoff with up to 30% jitter, capped at max_delay_ms.

    attempt is 0-indexed: attempt 0 waits between base and 1.3 * base.
    """
    # exponent is clamped so the float jitter math cannot overflow
    exponential_delay = base_delay_ms * (2 ** min(max(attempt, 0), 32))
    jitter = random.random() * 0.3 * exponential_delay
    return int(min(exponential_delay + jitter, max_delay_ms))
