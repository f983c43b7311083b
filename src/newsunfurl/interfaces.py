"""Interfaces of the collaborators the core depends on."""

from abc import ABC, abstractmethod
from datetime import datetime

from newsunfurl.models import RetryState


class ResolverError(Exception):
    """Raised when a redirect target cannot be discovered."""

    def __init__(
        self,
        reason: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        self.reason = reason
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(reason)


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware time."""
        pass


class RedirectResolver(ABC):
    """Discovers where a source service redirects a URL to."""

    @abstractmethod
    async def resolve(self, url: str, timeout: float, max_redirects: int) -> str:
        """Return the final destination of ``url``.

        Implementations must never follow a redirect to a non-http(s) scheme
        and raise ResolverError on any failure.
        """
        pass


class ItemStore(ABC):
    """Persistence of per-item retry bookkeeping."""

    @abstractmethod
    async def load_retry_state(self, item_id: str) -> RetryState | None:
        """Load the latest retry state of an item, if it ever failed."""
        pass

    @abstractmethod
    async def save_retry_state(self, item_id: str, state: RetryState) -> None:
        """Persist a new retry state for an item."""
        pass

    @abstractmethod
    async def list_due_for_retry(self, now: datetime) -> list[str]:
        """List items whose next attempt is at or before ``now``."""
        pass

    @abstractmethod
    async def mark_permanently_failed(self, item_id: str, reason: str) -> None:
        """Record that an item will never be retried."""
        pass

    @abstractmethod
    async def mark_succeeded(self, item_id: str) -> None:
        """Record that an item was processed successfully."""
        pass

    @abstractmethod
    async def get_source_link(self, item_id: str) -> str | None:
        """Return the feed link an item was ingested from."""
        pass
