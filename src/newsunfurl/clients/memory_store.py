"""In-memory ItemStore used by the CLI and tests."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from newsunfurl.interfaces import ItemStore
from newsunfurl.models import ItemStatus, RetryState
from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StoredItem:
    """A feed item as kept by the in-memory store."""

    item_id: str
    link: str
    status: ItemStatus = ItemStatus.PENDING
    retry_state: RetryState | None = None
    failure_reason: str | None = None
    history: list[RetryState] = field(default_factory=list)


class InMemoryItemStore(ItemStore):
    """Keeps items and their retry states in a dict.

    Nothing survives the process; a database-backed store implements the same
    interface for real deployments.
    """

    def __init__(self) -> None:
        self._items: dict[str, StoredItem] = {}
        self._lock = asyncio.Lock()

    def add_item(self, item_id: str, link: str) -> StoredItem:
        """Register a feed item as pending."""
        item = StoredItem(item_id=item_id, link=link)
        self._items[item_id] = item
        return item

    def get_item(self, item_id: str) -> StoredItem | None:
        """Return the stored item, if known."""
        return self._items.get(item_id)

    async def load_retry_state(self, item_id: str) -> RetryState | None:
        async with self._lock:
            item = self._items.get(item_id)
            return item.retry_state if item else None

    async def save_retry_state(self, item_id: str, state: RetryState) -> None:
        async with self._lock:
            item = self._require(item_id)
            item.retry_state = state
            item.history.append(state)
            if state.next_attempt_at is not None:
                item.status = ItemStatus.RETRY_SCHEDULED

    async def list_due_for_retry(self, now: datetime) -> list[str]:
        async with self._lock:
            due = [
                item
                for item in self._items.values()
                if item.status is ItemStatus.RETRY_SCHEDULED
                and item.retry_state is not None
                and item.retry_state.is_due(now)
            ]
        due.sort(key=lambda item: item.retry_state.next_attempt_at)  # type: ignore[union-attr]
        return [item.item_id for item in due]

    async def mark_permanently_failed(self, item_id: str, reason: str) -> None:
        async with self._lock:
            item = self._require(item_id)
            item.status = ItemStatus.FAILED
            item.failure_reason = reason
        logger.info("Item marked as failed", item_id=item_id, reason=reason)

    async def mark_succeeded(self, item_id: str) -> None:
        async with self._lock:
            item = self._require(item_id)
            item.status = ItemStatus.SUCCEEDED
            item.failure_reason = None

    async def get_source_link(self, item_id: str) -> str | None:
        async with self._lock:
            item = self._items.get(item_id)
            return item.link if item else None

    def _require(self, item_id: str) -> StoredItem:
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(f"Unknown item: {item_id}")
        return item
