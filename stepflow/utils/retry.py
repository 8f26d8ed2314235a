"""Retry policy enforcement for step invocations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..contracts import RetryPolicy
from ..exceptions import StepError

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_DELAY_MS = 1000


def compute_backoff(
    attempt: int,
    initial_delay_ms: Optional[int] = None,
    multiplier: Optional[float] = None,
    default_initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
) -> float:
    """Seconds to wait after failed ``attempt`` (1-based) before the next one.

    ``initial_delay_ms * multiplier ** (attempt - 1)``; an unset multiplier
    means a fixed interval.
    """
    base = default_initial_delay_ms if initial_delay_ms is None else initial_delay_ms
    factor = 1.0 if multiplier is None else multiplier
    return base * factor ** (attempt - 1) / 1000.0


@dataclass(frozen=True)
class Attempt:
    """One numbered try of a step."""

    number: int
    max_attempts: int

    @property
    def is_last(self) -> bool:
        return self.number >= self.max_attempts


@dataclass
class RetryOutcome:
    """Result of running a step under its retry policy."""

    output: Optional[str] = None
    error: Optional[StepError] = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None


class RetryController:
    """Runs an attempt callable up to ``max_retries + 1`` times.

    The controller never persists anything; callers that want an audit trail
    record it inside the attempt callable, using :meth:`will_retry` to label
    failed attempts consistently with what the controller does next.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        default_initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self._default_initial_delay_ms = default_initial_delay_ms
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    def delay_after(self, attempt: int) -> float:
        return compute_backoff(
            attempt,
            self.policy.initial_delay_ms,
            self.policy.backoff_multiplier,
            self._default_initial_delay_ms,
        )

    def will_retry(self, attempt: Attempt, error: StepError) -> bool:
        return error.retryable and not attempt.is_last

    async def run(
        self, attempt_fn: Callable[[Attempt], Awaitable[str]]
    ) -> RetryOutcome:
        """Call ``attempt_fn`` until it returns or attempts are exhausted.

        Only :class:`StepError` is handled here; anything else propagates to
        the caller untouched.
        """
        outcome = RetryOutcome()
        for number in range(1, self.max_attempts + 1):
            attempt = Attempt(number=number, max_attempts=self.max_attempts)
            outcome.attempts = number
            try:
                outcome.output = await attempt_fn(attempt)
            except StepError as exc:
                outcome.error = exc
                if not self.will_retry(attempt, exc):
                    return outcome
                delay = self.delay_after(number)
                logger.info(
                    f"Attempt {number}/{self.max_attempts} failed: {exc.message}; "
                    f"retrying in {delay:.3f}s"
                )
                await self._sleep(delay)
                continue
            outcome.error = None
            return outcome
        return outcome
