"""
Retry policy for the request engine.

Retries are bounded only by the attempt count. There is no coordination
across requests, so a sustained rate limit makes every in-flight request
burn through its attempts.
"""

import random
from enum import Enum
from typing import Optional

from .errors import FacebookError, is_retryable_error


class RetryDecision(str, Enum):
    RETRY = "retry"
    GIVE_UP = "give_up"


def retry_decision(error: FacebookError, attempts_made: int, max_attempts: int) -> RetryDecision:
    """Retry a retryable condition while attempts remain."""
    if is_retryable_error(error) and attempts_made < max_attempts:
        return RetryDecision.RETRY
    return RetryDecision.GIVE_UP


def retry_delay(base: float, jitter: float, rng: Optional[random.Random] = None) -> float:
    """Delay before resubmitting: base plus uniform jitter in [0, jitter]."""
    if jitter <= 0:
        return max(base, 0.0)
    return max(base, 0.0) + (rng or random).uniform(0, jitter)
