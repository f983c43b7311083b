"""Shared data models for newsunfurl."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class FailureClass(str, Enum):
    """Whether a failed attempt is worth retrying."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


class ItemStatus(str, Enum):
    """Processing status of a feed item."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class RetryState:
    """Retry bookkeeping for one item.

    The item store persists these; the retry orchestrator only computes the
    next value from the current one.
    """

    attempt_count: int = 0
    next_attempt_at: datetime | None = None
    last_error: str = ""

    @property
    def is_terminal(self) -> bool:
        """True once no further attempt will be scheduled."""
        return self.attempt_count > 0 and self.next_attempt_at is None

    def is_due(self, now: datetime) -> bool:
        """Check if a scheduled retry may run at ``now``."""
        return self.next_attempt_at is not None and self.next_attempt_at <= now


@dataclass
class RateWindow:
    """Timestamp of the last processing action allowed for one worker.

    Local pacing only: each worker owns its own window, nothing is shared
    between processes.
    """

    last_allowed_at: datetime | None = None

    def record(self, now: datetime) -> None:
        """Remember that an action was dispatched at ``now``."""
        self.last_allowed_at = now

    def elapsed(self, now: datetime) -> timedelta | None:
        """Time since the last recorded action, or None if there was none."""
        if self.last_allowed_at is None:
            return None
        return now - self.last_allowed_at
