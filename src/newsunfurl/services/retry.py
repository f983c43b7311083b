"""Retry policy for failed decode and fetch attempts.

Nothing in here performs I/O. The orchestrator computes the next RetryState
from the current one; the caller loads and saves states through its
ItemStore.

Policy:
- Backoff is ``base_delay * 2**attempt_count`` seconds plus a uniform jitter
  in ``[0, max_jitter)``: roughly 60s, 120s, 240s with the defaults.
- An item fails for good once ``attempt_count + 1`` reaches ``max_attempts``
  (3) or the error is permanent.
- Errors the core raises itself carry a ``retryable`` flag that decides their
  class. Anything else is matched by message against the tables below, and
  unknown messages are treated as retryable so a new kind of transient error
  never drops an item silently.
"""

import random
import re
from dataclasses import replace
from datetime import timedelta

from newsunfurl.interfaces import Clock
from newsunfurl.models import FailureClass, RateWindow, RetryState
from newsunfurl.utils.clock import SystemClock
from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 60.0
MAX_JITTER_SECONDS = 10.0

PERMANENT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bHTTP 40[34]\b",
        r"\bHTTP 410\b",
        r"malformed",
        r"invalid url",
        r"ssrf",
        r"blocked address",
        r"no content",
        r"parseable content",
        r"content extraction failed",
        r"invalid base64",
        r"no url found",
        r"not a google news",
    )
)

RETRYABLE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"time(?:d)?[ -]?out",
        r"connection",
        r"network",
        r"\bdns\b",
        r"name resolution",
        r"could not resolve",
        r"\bHTTP 429\b",
        r"\bHTTP 50[234]\b",
        r"rate limit",
    )
)


def describe_error(error: str | BaseException) -> str:
    """Return the text recorded as an item's last error."""
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


def classify(error: str | BaseException) -> FailureClass:
    """Decide whether an error is worth retrying.

    Args:
        error: An exception raised while processing an item, or its message.

    Returns:
        FailureClass.PERMANENT for errors that cannot succeed later,
        FailureClass.RETRYABLE otherwise.
    """
    retryable = getattr(error, "retryable", None)
    if isinstance(retryable, bool):
        return FailureClass.RETRYABLE if retryable else FailureClass.PERMANENT

    message = describe_error(error)
    if any(pattern.search(message) for pattern in PERMANENT_PATTERNS):
        return FailureClass.PERMANENT
    if not any(pattern.search(message) for pattern in RETRYABLE_PATTERNS):
        logger.debug("Unrecognized error, treating as retryable", error=message)
    return FailureClass.RETRYABLE


class RetryOrchestrator:
    """Computes retry transitions and local pacing decisions."""

    def __init__(
        self,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY_SECONDS,
        max_jitter: float = MAX_JITTER_SECONDS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_jitter = max_jitter

    @property
    def clock(self) -> Clock:
        """The clock used for scheduling."""
        return self._clock

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def classify(self, error: str | BaseException) -> FailureClass:
        """Decide whether an error is worth retrying."""
        return classify(error)

    def compute_backoff(self, attempt_count: int) -> timedelta:
        """Delay before the retry following attempt number ``attempt_count``.

        Raises:
            ValueError: If ``attempt_count`` is negative.
        """
        if attempt_count < 0:
            raise ValueError("attempt_count cannot be negative")
        base = self._base_delay * (2**attempt_count)
        # Floor to whole microseconds so the jitter stays below max_jitter.
        jitter_us = int(self._rng.random() * self._max_jitter * 1_000_000)
        return timedelta(seconds=base, microseconds=jitter_us)

    def next_state(self, current: RetryState, error: str | BaseException) -> RetryState:
        """Compute the retry state after another failed attempt.

        Args:
            current: The latest persisted state of the item (``RetryState()``
                if it never failed before).
            error: The failure of the attempt that just ran.

        Returns:
            A terminal state (``next_attempt_at`` is None) when attempts are
            exhausted or the error is permanent, otherwise a state scheduled
            after the backoff delay.
        """
        message = describe_error(error)
        if current.is_terminal:
            return replace(current, last_error=message)

        attempts_so_far = max(current.attempt_count, 0)
        attempt_count = attempts_so_far + 1

        if attempt_count >= self._max_attempts or classify(error) is FailureClass.PERMANENT:
            return RetryState(attempt_count=attempt_count, next_attempt_at=None, last_error=message)

        delay = self.compute_backoff(attempts_so_far)
        return RetryState(
            attempt_count=attempt_count,
            next_attempt_at=self._clock.now() + delay,
            last_error=message,
        )

    def time_until_allowed(self, window: RateWindow, min_interval: timedelta) -> timedelta:
        """How long to wait before the window allows another action."""
        elapsed = window.elapsed(self._clock.now())
        if elapsed is None or elapsed >= min_interval:
            return timedelta(0)
        return min_interval - elapsed

    def can_proceed(self, window: RateWindow, min_interval: timedelta) -> bool:
        """Check whether ``min_interval`` has passed since the window's last action.

        This is a per-worker throttle, not a distributed rate limiter. The
        caller records the window after dispatching.
        """
        return self.time_until_allowed(window, min_interval) == timedelta(0)
