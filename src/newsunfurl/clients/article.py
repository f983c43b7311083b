"""Article page fetcher for newsunfurl."""

import asyncio
from dataclasses import dataclass, field

import httpx

from newsunfurl.config import DEFAULT_USER_AGENT
from newsunfurl.security.url_validator import DestinationRejected, DestinationValidator
from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)


class FetchError(Exception):
    """Raised when an article page cannot be fetched."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


@dataclass
class FetchedPage:
    """Represents a fetched article page."""

    url: str
    final_url: str
    status_code: int
    html: str = field(repr=False)

    @property
    def redirected(self) -> bool:
        """Check if the page was served from a different URL."""
        return self.final_url != self.url


class ArticleFetcher:
    """Fetches decoded article URLs.

    Every request, including each redirect hop, is validated right before it
    is sent, so a host that started resolving to a private address after the
    token was decoded is still refused.
    """

    def __init__(
        self,
        validator: DestinationValidator,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_redirects: int = 5,
    ) -> None:
        self._validator = validator
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=max_redirects,
            headers={"User-Agent": user_agent},
            event_hooks={"request": [self._check_destination]},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "ArticleFetcher":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _check_destination(self, request: httpx.Request) -> None:
        await asyncio.to_thread(self._validator.validate, str(request.url))

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch the HTML of an article.

        Args:
            url: The decoded article URL.

        Returns:
            The fetched page.

        Raises:
            FetchError: If the request is refused, fails, returns an HTTP
                error or an empty body.
        """
        logger.info("Fetching article", url=url)

        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except DestinationRejected as e:
            logger.warning("Blocked destination while fetching", url=url, reason=e.reason.value)
            raise FetchError(f"blocked destination: {e.detail}") from e
        except httpx.HTTPStatusError as e:
            logger.warning("HTTP error fetching URL", url=url, status=e.response.status_code)
            raise FetchError(f"HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.warning("Timeout fetching URL", url=url)
            raise FetchError("timeout") from e
        except httpx.TooManyRedirects as e:
            logger.warning("Too many redirects fetching URL", url=url)
            raise FetchError("too many redirects") from e
        except httpx.RequestError as e:
            logger.warning("Request error fetching URL", url=url, error=str(e))
            raise FetchError(f"request error: {e}") from e

        html = response.text
        if not html.strip():
            logger.warning("Article has no content", url=url)
            raise FetchError("no content")

        page = FetchedPage(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            html=html,
        )
        logger.info(
            "Article fetched",
            url=url,
            final_url=page.final_url,
            size=len(html),
        )
        return page
