"""Unit tests for Article fetcher."""

import httpx
import pytest
import respx
from httpx import Response

from newsunfurl.clients.article import ArticleFetcher, FetchedPage, FetchError
from newsunfurl.security.url_validator import DestinationValidator


def _dns(host: str) -> list[str]:
    return {
        "example.com": ["93.184.216.34"],
        "www.example.com": ["93.184.216.34"],
        "rebind.example": ["127.0.0.1"],
    }.get(host, [])


class TestFetchedPage:
    """Tests for FetchedPage data class."""

    def test_redirected(self) -> None:
        """Should report when the final URL differs."""
        page = FetchedPage(
            url="https://example.com/a",
            final_url="https://www.example.com/a",
            status_code=200,
            html="<html></html>",
        )
        assert page.redirected is True

    def test_html_not_in_repr(self) -> None:
        """Page bodies are left out of the repr."""
        page = FetchedPage(url="u", final_url="u", status_code=200, html="<p>secret</p>")
        assert "secret" not in repr(page)


class TestArticleFetcher:
    """Tests for ArticleFetcher."""

    @pytest.fixture
    async def fetcher(self):
        """Create a test fetcher."""
        fetcher = ArticleFetcher(DestinationValidator(resolver=_dns), timeout=5.0)
        yield fetcher
        await fetcher.close()

    @respx.mock
    async def test_fetch_success(self, fetcher: ArticleFetcher) -> None:
        """Should return the page HTML."""
        html = "<html><head><title>Story</title></head><body><p>Text</p></body></html>"
        respx.get("https://example.com/article").mock(return_value=Response(200, text=html))

        page = await fetcher.fetch("https://example.com/article")

        assert page.html == html
        assert page.status_code == 200
        assert page.final_url == "https://example.com/article"
        assert page.redirected is False

    @respx.mock
    async def test_fetch_follows_redirects(self, fetcher: ArticleFetcher) -> None:
        """Should follow redirects to public hosts."""
        respx.get("https://example.com/a").mock(
            return_value=Response(301, headers={"location": "https://www.example.com/a"})
        )
        respx.get("https://www.example.com/a").mock(return_value=Response(200, text="<p>moved</p>"))

        page = await fetcher.fetch("https://example.com/a")

        assert page.final_url == "https://www.example.com/a"
        assert page.redirected is True

    @respx.mock
    async def test_redirect_to_private_host_is_blocked(self, fetcher: ArticleFetcher) -> None:
        """Should validate every redirect hop before connecting."""
        respx.get("https://example.com/a").mock(
            return_value=Response(302, headers={"location": "http://169.254.169.254/latest/meta-data/"})
        )
        metadata = respx.get("http://169.254.169.254/latest/meta-data/").mock(
            return_value=Response(200, text="credentials")
        )

        with pytest.raises(FetchError, match="blocked destination: SSRF blocked address"):
            await fetcher.fetch("https://example.com/a")
        assert metadata.called is False

    @respx.mock
    async def test_rebound_host_is_blocked(self, fetcher: ArticleFetcher) -> None:
        """Should re-check DNS right before the request."""
        route = respx.get("https://rebind.example/").mock(return_value=Response(200, text="x"))

        with pytest.raises(FetchError, match="blocked destination"):
            await fetcher.fetch("https://rebind.example/")
        assert route.called is False

    @respx.mock
    async def test_fetch_403_raises_fetch_error(self, fetcher: ArticleFetcher) -> None:
        """Should raise FetchError with HTTP 403 reason on 403."""
        respx.get("https://example.com/blocked").mock(return_value=Response(403))

        with pytest.raises(FetchError, match="HTTP 403"):
            await fetcher.fetch("https://example.com/blocked")

    @respx.mock
    async def test_fetch_404_raises_fetch_error(self, fetcher: ArticleFetcher) -> None:
        """Should raise FetchError on 404."""
        respx.get("https://example.com/missing").mock(return_value=Response(404))

        with pytest.raises(FetchError, match="HTTP 404"):
            await fetcher.fetch("https://example.com/missing")

    @respx.mock
    async def test_fetch_timeout_raises_fetch_error(self, fetcher: ArticleFetcher) -> None:
        """Should raise FetchError on timeout."""
        respx.get("https://example.com/slow").mock(side_effect=httpx.TimeoutException("timeout"))

        with pytest.raises(FetchError, match="timeout"):
            await fetcher.fetch("https://example.com/slow")

    @respx.mock
    async def test_fetch_connection_error(self, fetcher: ArticleFetcher) -> None:
        """Should raise FetchError on transport errors."""
        respx.get("https://example.com/down").mock(side_effect=httpx.ConnectError("connection refused"))

        with pytest.raises(FetchError, match="request error: connection refused"):
            await fetcher.fetch("https://example.com/down")

    @respx.mock
    async def test_fetch_empty_body_raises_fetch_error(self, fetcher: ArticleFetcher) -> None:
        """Should raise FetchError when the page is empty."""
        respx.get("https://example.com/empty").mock(return_value=Response(200, text="  \n"))

        with pytest.raises(FetchError, match="no content"):
            await fetcher.fetch("https://example.com/empty")

    @respx.mock
    async def test_too_many_redirects(self) -> None:
        """Should give up on redirect loops."""
        fetcher = ArticleFetcher(DestinationValidator(resolver=_dns), max_redirects=2)
        respx.get("https://example.com/loop").mock(
            return_value=Response(302, headers={"location": "https://example.com/loop"})
        )

        with pytest.raises(FetchError, match="too many redirects"):
            await fetcher.fetch("https://example.com/loop")
        await fetcher.close()
