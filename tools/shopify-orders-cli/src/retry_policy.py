#!/usr/bin/env python3
"""
Bounded retry with exponential backoff for eventually-consistent reads.

Shopify finishes fulfillment routing asynchronously after an order is
finalized, so the first lookup often comes back empty. Only read calls
should go through here; writes are never retried.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 3.0
    multiplier: float = 1.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.multiplier < 1:
            raise ValueError("base_delay must be >= 0 and multiplier >= 1")

    def delays(self) -> List[float]:
        """Sleep durations between attempts (one fewer than max_attempts)."""
        return [self.base_delay * (self.multiplier ** i) for i in range(self.max_attempts - 1)]


def retry_until(
    func: Callable[[], T],
    predicate: Callable[[T], bool],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "lookup",
) -> Tuple[T, bool]:
    """Call func until predicate(result) holds or the policy is exhausted.

    Returns (last_result, satisfied). Exceptions raised by func propagate
    immediately; only an unsatisfying result triggers another attempt.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays()
    attempt = 0
    while True:
        result = func()
        attempt += 1
        if predicate(result):
            if attempt > 1:
                logging.info("%s succeeded on attempt %d/%d", label, attempt, policy.max_attempts)
            return result, True
        if attempt >= policy.max_attempts:
            logging.warning("%s not satisfied after %d attempts", label, attempt)
            return result, False
        delay = delays[attempt - 1]
        logging.info("%s not ready; retrying in %.1fs (attempt %d/%d)", label, delay, attempt + 1, policy.max_attempts)
        sleep(delay)
