"""HTTP redirect resolver for modern Google News tokens."""

import json
import re

import httpx

from newsunfurl.config import DEFAULT_USER_AGENT
from newsunfurl.interfaces import RedirectResolver, ResolverError
from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_REDIRECT_SCHEMES = ("http", "https")

# Hosts on the source side of the redirect chain. Hops inside these are
# followed; the first hop leaving them is the destination and is not fetched.
SOURCE_DOMAINS = ("google.com",)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

BATCHEXECUTE_PATH = "/_/DotsSplashUi/data/batchexecute"

SIGNATURE_PATTERN = re.compile(r'data-n-a-sg="([^"]+)"')
TIMESTAMP_PATTERN = re.compile(r'data-n-a-ts="([^"]+)"')
ARTICLE_ID_PATTERN = re.compile(r'data-n-a-id="([^"]+)"')


def build_batchexecute_payload(article_id: str, timestamp: str, signature: str) -> str:
    """Build the ``f.req`` form value asking for an article's destination."""
    request = (
        '["garturlreq",[["X","X",["X","X"],null,null,1,1,"US:en",null,1,'
        'null,null,null,null,null,0,1],"X","X",1,[1,1,1],1,1,null,0,0,null,0],'
        f'"{article_id}",{timestamp},"{signature}"]'
    )
    return json.dumps([[["Fbv4je", request, None, "generic"]]])


def parse_batchexecute_response(text: str) -> str:
    """Extract the destination URL from a batchexecute response body.

    The body starts with an anti-JSON-hijacking line, then a blank line and a
    JSON array of envelopes. The ``wrb.fr`` envelope carries a JSON string
    whose second element is the URL.

    Raises:
        ResolverError: If the body holds no destination.
    """
    chunks = text.split("\n\n")
    if len(chunks) < 2:
        raise ResolverError("malformed inline API response")
    try:
        envelopes = json.loads(chunks[1])
        for envelope in envelopes:
            if (
                isinstance(envelope, list)
                and len(envelope) > 2
                and envelope[0] == "wrb.fr"
                and isinstance(envelope[2], str)
            ):
                inner = json.loads(envelope[2])
                if isinstance(inner, list) and len(inner) > 1 and isinstance(inner[1], str):
                    return inner[1]
    except (ValueError, TypeError) as e:
        raise ResolverError(f"malformed inline API response: {e}") from e
    raise ResolverError("no destination in inline API response")


class HttpRedirectResolver(RedirectResolver):
    """Follows Google News redirects with httpx, one hop at a time."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        source_domains: tuple[str, ...] = SOURCE_DOMAINS,
    ) -> None:
        self._source_domains = source_domains
        self._client = httpx.AsyncClient(
            follow_redirects=False,
            headers={"User-Agent": user_agent},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpRedirectResolver":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def resolve(self, url: str, timeout: float, max_redirects: int) -> str:
        """Follow the redirect chain of ``url`` until it leaves the source site.

        Args:
            url: The Google News article link.
            timeout: Timeout in seconds for each request.
            max_redirects: Maximum number of redirect hops to follow.

        Returns:
            The first URL outside the source site, or the destination reported
            by the inline API when the article page does not redirect.

        Raises:
            ResolverError: On network failure, HTTP error, a redirect to a
                non-http(s) scheme, or too many redirects.
        """
        current = httpx.URL(url)
        origin_host = current.host
        redirects = 0

        while True:
            response = await self._send("GET", current, timeout)

            if response.is_redirect:
                if redirects >= max_redirects:
                    raise ResolverError(f"too many redirects (max {max_redirects})")
                try:
                    target = current.join(response.headers["location"])
                except httpx.InvalidURL as e:
                    raise ResolverError(f"invalid redirect location: {e}") from e
                if target.scheme not in ALLOWED_REDIRECT_SCHEMES:
                    logger.warning("Refusing redirect", url=str(current), scheme=target.scheme)
                    raise ResolverError(f"refusing redirect to non-http(s) scheme: {target.scheme}")
                if not target.host:
                    raise ResolverError("redirect location has no host")
                redirects += 1
                if not self._is_source_host(target.host, origin_host):
                    logger.info("Redirect resolved", url=url, destination=str(target), hops=redirects)
                    return str(target)
                current = target
                continue

            if response.status_code >= 400:
                code = response.status_code
                raise ResolverError(
                    f"HTTP {code}",
                    retryable=code in RETRYABLE_STATUS_CODES,
                    status_code=code,
                )

            return await self._resolve_inline(current, response.text, timeout)

    def _is_source_host(self, host: str, origin_host: str) -> bool:
        host = host.lower()
        if host == origin_host.lower():
            return True
        return any(host == domain or host.endswith("." + domain) for domain in self._source_domains)

    async def _resolve_inline(self, page_url: httpx.URL, html: str, timeout: float) -> str:
        signature = SIGNATURE_PATTERN.search(html)
        timestamp = TIMESTAMP_PATTERN.search(html)
        if not signature or not timestamp:
            raise ResolverError("no redirect occurred")

        article_id_match = ARTICLE_ID_PATTERN.search(html)
        article_id = article_id_match.group(1) if article_id_match else page_url.path.rsplit("/", 1)[-1]

        endpoint = page_url.join(BATCHEXECUTE_PATH)
        payload = build_batchexecute_payload(article_id, timestamp.group(1), signature.group(1))
        logger.debug("Querying inline API", endpoint=str(endpoint), article_id=article_id)

        response = await self._send("POST", endpoint, timeout, data={"f.req": payload})
        if response.status_code >= 400:
            code = response.status_code
            raise ResolverError(
                f"HTTP {code} from inline API",
                retryable=code in RETRYABLE_STATUS_CODES,
                status_code=code,
            )

        destination = parse_batchexecute_response(response.text)
        logger.info("Inline API resolved", url=str(page_url), destination=destination)
        return destination

    async def _send(
        self,
        method: str,
        url: httpx.URL,
        timeout: float,
        data: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, url, data=data, timeout=timeout)
        except httpx.TimeoutException as e:
            logger.warning("Timeout resolving URL", url=str(url))
            raise ResolverError("timeout", retryable=True) from e
        except httpx.RequestError as e:
            logger.warning("Request error resolving URL", url=str(url), error=str(e))
            raise ResolverError(f"request error: {e}", retryable=True) from e
