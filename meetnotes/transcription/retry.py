"""Bounded retry for speech service calls."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from ..errors import (
    SpeechServiceAuthError,
    SpeechServiceError,
    SpeechServiceNotConfigured,
    SpeechServiceRateLimited,
    SpeechServiceSizeLimitExceeded,
    SpeechServiceTransient,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Attempts and backoff for one external call.

    The wait after failed attempt ``n`` is ``backoff_seconds * n``, or
    ``rate_limit_backoff_seconds * n`` when the service reported a rate
    limit. There is no wait after the last attempt.
    """
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    rate_limit_backoff_seconds: float = 5.0

    def delay_for(self, attempt: int, error: Exception) -> float:
        if isinstance(error, SpeechServiceRateLimited):
            return self.rate_limit_backoff_seconds * attempt
        return self.backoff_seconds * attempt


def call_with_retry(operation: Callable[[], T],
                    policy: RetryPolicy,
                    description: str = "request",
                    sleep: Callable[[float], None] = time.sleep) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Authentication, configuration and size-limit errors are raised
    immediately. Any other SpeechServiceError is retried; the last one
    is re-raised.
    """
    last_error = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            logger.info(f"{description}: attempt {attempt}/{policy.max_attempts}")
            return operation()
        except (SpeechServiceAuthError, SpeechServiceNotConfigured, SpeechServiceSizeLimitExceeded):
            raise
        except SpeechServiceError as e:
            last_error = e
            logger.warning(f"{description}: attempt {attempt} failed: {e}")
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt, e)
                if isinstance(e, SpeechServiceRateLimited):
                    logger.info(f"Rate limited, waiting {delay:.1f}s")
                sleep(delay)

    if isinstance(last_error, SpeechServiceTransient):
        raise last_error
    raise SpeechServiceTransient(f"{description} failed: {last_error}") from last_error
