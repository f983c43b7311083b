"""Google News token decoder for newsunfurl.

Feed items link to ``news.google.com/rss/articles/<id>`` instead of the
article. Two kinds of ids exist:

1. Legacy ids (``CBM``/``CWM`` prefix, shorter than 150 characters) embed the
   destination in a base64 record that can be decoded offline.
2. Modern ids only reveal the destination through a live request to Google
   News, handled by an injected RedirectResolver. Longer ids that still
   carry a legacy marker are tried offline first.

Either way the destination goes through DestinationValidator before it is
returned.
"""

import asyncio
import binascii
import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from newsunfurl.config import Settings
from newsunfurl.interfaces import RedirectResolver, ResolverError
from newsunfurl.security.url_validator import (
    DestinationRejected,
    DestinationValidator,
    RejectionReason,
)
from newsunfurl.services.legacy_format import (
    LEGACY_MARKERS,
    RecordTruncated,
    decode_base64,
    extract_first_url,
)
from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)

GOOGLE_NEWS_HOST = "news.google.com"

ARTICLE_PATH_PATTERN = re.compile(r"/(?:rss/)?(?:articles|read)/([^/?#]+)")
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+={0,2}$")

MIN_MODERN_TOKEN_LENGTH = 16
DEFAULT_LEGACY_MAX_LENGTH = 150


class TokenEncoding(str, Enum):
    """How a token carries its destination."""

    LEGACY = "legacy"
    MODERN = "modern"


class DecodeError(Exception):
    """Base class for token decoding failures."""

    retryable = False

    def __init__(self, reason: str, encoding: TokenEncoding | None = None) -> None:
        self.reason = reason
        self.encoding = encoding
        super().__init__(reason)


class NotRecognized(DecodeError):
    """The input is not a Google News link or article id."""


class InvalidEncoding(DecodeError):
    """A legacy id is not valid base64."""


class Truncated(DecodeError):
    """A legacy record declares more bytes than it holds."""


class NoUrlFound(DecodeError):
    """A legacy record holds no absolute URL."""


class NetworkFailure(DecodeError):
    """The modern lookup failed on the network or ran out of time."""

    retryable = True


class ResolutionFailed(DecodeError):
    """The source service answered, but not with a usable destination."""

    def __init__(
        self,
        reason: str,
        encoding: TokenEncoding | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(reason, encoding)
        self.retryable = retryable


class Rejected(DecodeError):
    """The decoded destination failed SSRF validation."""

    def __init__(
        self,
        rejection: RejectionReason,
        reason: str,
        encoding: TokenEncoding | None = None,
    ) -> None:
        super().__init__(reason, encoding)
        self.rejection = rejection
        self.retryable = rejection is RejectionReason.UNRESOLVABLE_HOST


@dataclass(frozen=True)
class ParsedToken:
    """An article id together with its encoding and lookup URL."""

    token: str
    encoding: TokenEncoding
    source_url: str


class TokenDecoder:
    """Decodes Google News tokens into validated destination URLs."""

    def __init__(
        self,
        validator: DestinationValidator,
        resolver: RedirectResolver,
        timeout: float = 10.0,
        max_redirects: int = 10,
        deadline: float = 30.0,
        legacy_max_length: int = DEFAULT_LEGACY_MAX_LENGTH,
        source_base_url: str = f"https://{GOOGLE_NEWS_HOST}",
    ) -> None:
        self._validator = validator
        self._resolver = resolver
        self._timeout = timeout
        self._max_redirects = max_redirects
        self._deadline = deadline
        self._legacy_max_length = legacy_max_length
        self._source_base_url = source_base_url.rstrip("/")
        self._source_hosts = {GOOGLE_NEWS_HOST, urlsplit(self._source_base_url).hostname or ""}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        resolver: RedirectResolver,
        validator: DestinationValidator | None = None,
    ) -> "TokenDecoder":
        """Create a decoder configured from application settings."""
        return cls(
            validator=validator or DestinationValidator(max_url_length=settings.max_url_length),
            resolver=resolver,
            timeout=settings.resolver_timeout,
            max_redirects=settings.max_redirects,
            deadline=settings.decode_deadline,
            legacy_max_length=settings.legacy_max_token_length,
            source_base_url=settings.source_base_url,
        )

    def parse_token(self, value: str) -> ParsedToken:
        """Work out which encoding a link or bare article id uses.

        No network I/O happens here.

        Raises:
            NotRecognized: If the value is neither a Google News article link
                nor an article id.
        """
        value = value.strip()
        if not value:
            raise NotRecognized("empty token")

        source_url: str | None = None
        if "://" in value:
            token = self._token_from_link(value)
            source_url = value
        else:
            token = value

        if token.startswith(LEGACY_MARKERS) and len(token) < self._legacy_max_length:
            encoding = TokenEncoding.LEGACY
        elif TOKEN_PATTERN.match(token) and len(token) >= MIN_MODERN_TOKEN_LENGTH:
            encoding = TokenEncoding.MODERN
        else:
            raise NotRecognized(f"not a Google News token: {token[:80]}")

        return ParsedToken(
            token=token,
            encoding=encoding,
            source_url=source_url or f"{self._source_base_url}/rss/articles/{token}",
        )

    async def decode(self, token: str, deadline: float | None = None) -> str:
        """Decode a Google News link or article id.

        Args:
            token: A full Google News article link or a bare article id.
            deadline: Overall seconds allowed for a modern lookup. Defaults
                to the decoder's configured deadline.

        Returns:
            The destination URL, already validated against SSRF.

        Raises:
            DecodeError: One of its subclasses, describing why decoding failed.
        """
        parsed = self.parse_token(token)
        encoding = parsed.encoding

        if encoding is TokenEncoding.LEGACY:
            try:
                url = self._decode_legacy(parsed.token)
            except DecodeError as e:
                logger.warning("Legacy token could not be decoded", reason=e.reason)
                raise
        else:
            url = self._try_offline(parsed)
            if url is not None:
                encoding = TokenEncoding.LEGACY
            else:
                url = await self._resolve_modern(parsed, deadline)

        try:
            await asyncio.to_thread(self._validator.validate, url)
        except DestinationRejected as e:
            raise Rejected(e.reason, f"destination rejected: {e.detail}", encoding) from e

        logger.info("Token decoded", encoding=encoding.value, url=url)
        return url

    def _try_offline(self, parsed: ParsedToken) -> str | None:
        # Long marker ids may still embed a long destination inline.
        if not parsed.token.startswith(LEGACY_MARKERS):
            return None
        try:
            return self._decode_legacy(parsed.token)
        except (InvalidEncoding, NoUrlFound):
            logger.debug("Marker token has no inline URL, resolving online", length=len(parsed.token))
            return None

    def _token_from_link(self, link: str) -> str:
        try:
            parts = urlsplit(link)
        except ValueError as e:
            raise NotRecognized(f"not a Google News link: {link[:80]}") from e

        if (parts.hostname or "") not in self._source_hosts:
            raise NotRecognized(f"not a Google News link: {link[:80]}")

        match = ARTICLE_PATH_PATTERN.search(parts.path)
        if not match:
            raise NotRecognized(f"no article id in Google News link: {link[:80]}")
        return match.group(1)

    def _decode_legacy(self, token: str) -> str:
        # Ids seen in feeds are usually the base64 of the whole record (the
        # "CBM" prefix is the record header), so the full id is the fallback.
        errors: list[DecodeError] = []
        for payload in (token[3:], token):
            try:
                return self._url_from_payload(payload)
            except DecodeError as e:
                errors.append(e)

        raise errors[0]

    def _url_from_payload(self, payload: str) -> str:
        try:
            data = decode_base64(payload)
        except binascii.Error as e:
            raise InvalidEncoding("invalid base64 encoding in token", TokenEncoding.LEGACY) from e

        try:
            url = extract_first_url(data)
        except RecordTruncated as e:
            raise Truncated(f"truncated token record: {e}", TokenEncoding.LEGACY) from e

        if url is None:
            raise NoUrlFound("no URL found in decoded token", TokenEncoding.LEGACY)
        return url

    async def _resolve_modern(self, parsed: ParsedToken, deadline: float | None) -> str:
        # Only this deadline becomes NetworkFailure; cancelling the caller's
        # task raises CancelledError as usual.
        logger.info("Resolving modern token", source_url=parsed.source_url)
        try:
            async with asyncio.timeout(self._deadline if deadline is None else deadline):
                return await self._resolver.resolve(
                    parsed.source_url,
                    timeout=self._timeout,
                    max_redirects=self._max_redirects,
                )
        except TimeoutError as e:
            logger.warning("Modern token lookup timed out", source_url=parsed.source_url)
            raise NetworkFailure("network failure: timeout", TokenEncoding.MODERN) from e
        except ResolverError as e:
            logger.warning(
                "Modern token lookup failed",
                source_url=parsed.source_url,
                reason=e.reason,
                status=e.status_code,
            )
            if e.retryable and e.status_code is None:
                raise NetworkFailure(f"network failure: {e.reason}", TokenEncoding.MODERN) from e
            raise ResolutionFailed(
                f"resolution failed: {e.reason}",
                TokenEncoding.MODERN,
                retryable=e.retryable,
            ) from e
