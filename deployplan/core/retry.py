"""Bounded exponential backoff for transient network timeouts.

Only ``NetworkTimeoutError`` is retried.  Reverts, validation errors and
everything else propagate on the first occurrence.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from deployplan.core.errors import NetworkTimeoutError
from deployplan.models.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Retrier:
    """Runs callables under a ``RetryPolicy``.

    Parameters
    ----------
    policy:
        Attempt budget and backoff schedule.
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def call(self, fn: Callable[[], T], *, operation: str = "call") -> T:
        """Call ``fn`` until it succeeds or the attempt budget is spent.

        The last ``NetworkTimeoutError`` is re-raised once the budget is
        exhausted, with the attempt count added to its details.
        """
        attempt = 1
        while True:
            try:
                return fn()
            except NetworkTimeoutError as exc:
                if attempt >= self.policy.max_attempts:
                    exc.details.setdefault("attempts", attempt)
                    logger.error(
                        "%s timed out %d time(s); retry budget exhausted.",
                        operation, attempt,
                    )
                    raise
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    "%s timed out (attempt %d/%d); retrying in %.2fs.",
                    operation, attempt, self.policy.max_attempts, delay,
                )
                self._sleep(delay)
                attempt += 1
