"""Per-item processing flow for newsunfurl."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from newsunfurl.clients.article import ArticleFetcher, FetchedPage, FetchError
from newsunfurl.interfaces import ItemStore
from newsunfurl.models import FailureClass, ItemStatus, RateWindow, RetryState
from newsunfurl.services.decoder import DecodeError, TokenDecoder
from newsunfurl.services.retry import RetryOrchestrator
from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class ProcessingResult:
    """Outcome of one processing attempt."""

    item_id: str
    status: ItemStatus
    url: str | None = None
    page: FetchedPage | None = None
    error: str | None = None
    retry_state: RetryState | None = None


@dataclass
class BatchResult:
    """Result of a run over every due item."""

    due: int = 0
    succeeded: int = 0
    retry_scheduled: int = 0
    failed: int = 0
    throttled: int = 0
    skipped: int = 0
    results: list[ProcessingResult] = field(default_factory=list)

    def add(self, result: ProcessingResult) -> None:
        """Count a processing result."""
        self.results.append(result)
        if result.status is ItemStatus.SUCCEEDED:
            self.succeeded += 1
        elif result.status is ItemStatus.RETRY_SCHEDULED:
            self.retry_scheduled += 1
        elif result.status is ItemStatus.FAILED:
            self.failed += 1
        elif result.status is ItemStatus.THROTTLED:
            self.throttled += 1


class ArticleProcessor:
    """Decodes and fetches feed items, scheduling retries on failure."""

    def __init__(
        self,
        decoder: TokenDecoder,
        fetcher: ArticleFetcher,
        store: ItemStore,
        retry: RetryOrchestrator,
        window: RateWindow | None = None,
        min_interval: timedelta = timedelta(seconds=5),
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._decoder = decoder
        self._fetcher = fetcher
        self._store = store
        self._retry = retry
        self._window = window or RateWindow()
        self._min_interval = min_interval
        self._sleep = sleep

    @property
    def window(self) -> RateWindow:
        """The pacing window of this worker."""
        return self._window

    async def process(self, item_id: str, link: str) -> ProcessingResult:
        """Decode and fetch one item.

        Args:
            item_id: Identifier of the item in the store.
            link: The Google News link (or bare id) from the feed.

        Returns:
            ProcessingResult. THROTTLED results leave the store untouched.
        """
        if not self._retry.can_proceed(self._window, self._min_interval):
            logger.info("Processing throttled", item_id=item_id)
            return ProcessingResult(item_id=item_id, status=ItemStatus.THROTTLED)

        self._window.record(self._retry.clock.now())
        logger.info("Processing item", item_id=item_id, link=link)

        try:
            url = await self._decoder.decode(link)
            page = await self._fetcher.fetch(url)
        except (DecodeError, FetchError) as e:
            return await self._handle_failure(item_id, e)

        await self._store.mark_succeeded(item_id)
        logger.info("Item processed", item_id=item_id, url=url, final_url=page.final_url)
        return ProcessingResult(item_id=item_id, status=ItemStatus.SUCCEEDED, url=url, page=page)

    async def process_due(self, pace: bool = True) -> BatchResult:
        """Process every item the store lists as due, oldest schedule first.

        Args:
            pace: If True, wait out the pacing interval between items instead
                of reporting them as throttled.

        Returns:
            BatchResult with per-status counts.
        """
        due = await self._store.list_due_for_retry(self._retry.clock.now())
        batch = BatchResult(due=len(due))
        logger.info("Processing due items", count=len(due))

        for item_id in due:
            link = await self._store.get_source_link(item_id)
            if not link:
                logger.warning("Due item has no source link", item_id=item_id)
                batch.skipped += 1
                continue

            if pace:
                wait = self._retry.time_until_allowed(self._window, self._min_interval)
                if wait > timedelta(0):
                    await self._sleep(wait.total_seconds())

            batch.add(await self.process(item_id, link))

        logger.info(
            "Due items processed",
            due=batch.due,
            succeeded=batch.succeeded,
            retry_scheduled=batch.retry_scheduled,
            failed=batch.failed,
            throttled=batch.throttled,
            skipped=batch.skipped,
        )
        return batch

    async def _handle_failure(self, item_id: str, error: DecodeError | FetchError) -> ProcessingResult:
        current = await self._store.load_retry_state(item_id) or RetryState()
        state = self._retry.next_state(current, error)
        await self._store.save_retry_state(item_id, state)

        if state.is_terminal:
            permanent = self._retry.classify(error) is FailureClass.PERMANENT
            cause = "permanent error" if permanent else "max attempts reached"
            await self._store.mark_permanently_failed(item_id, state.last_error)
            logger.error(
                "Item failed permanently",
                item_id=item_id,
                reason=cause,
                error=state.last_error,
                attempts=state.attempt_count,
            )
            return ProcessingResult(
                item_id=item_id,
                status=ItemStatus.FAILED,
                error=state.last_error,
                retry_state=state,
            )

        logger.warning(
            "Item queued for retry",
            item_id=item_id,
            error=state.last_error,
            attempt=state.attempt_count,
            next_attempt_at=state.next_attempt_at.isoformat() if state.next_attempt_at else None,
        )
        return ProcessingResult(
            item_id=item_id,
            status=ItemStatus.RETRY_SCHEDULED,
            error=state.last_error,
            retry_state=state,
        )
