"""SSRF protection for decoded destination URLs.

A URL is accepted only if it uses http or https, stays under a length
ceiling, and every address its host resolves to lies outside the loopback,
private, link-local and unique-local ranges. A single blocked address in a
DNS answer rejects the whole URL.

Validation happens before the real request is made, so a host whose DNS
answer changes in between can still slip through. Fetchers should validate
again right before connecting (see ArticleFetcher).
"""

import ipaddress
import socket
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from newsunfurl.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

MAX_URL_LENGTH = 2000

BLOCKED_RANGES = (
    # IPv4
    "127.0.0.0/8",  # loopback
    "10.0.0.0/8",  # private
    "172.16.0.0/12",  # private
    "192.168.0.0/16",  # private
    "169.254.0.0/16",  # link-local, includes cloud metadata at 169.254.169.254
    "0.0.0.0/8",  # "this" network
    # IPv6
    "::1/128",  # loopback
    "::/128",  # unspecified
    "fc00::/7",  # unique local
    "fe80::/10",  # link-local
)

HostResolver = Callable[[str], list[str]]


class RejectionReason(str, Enum):
    """Why a destination URL was refused."""

    MALFORMED = "malformed"
    INVALID_SCHEME = "invalid_scheme"
    TOO_LONG = "too_long"
    UNRESOLVABLE_HOST = "unresolvable_host"
    BLOCKED_ADDRESS = "blocked_address"


class DestinationRejected(Exception):
    """Raised when a URL fails SSRF validation."""

    def __init__(self, reason: RejectionReason, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(detail)

    @property
    def retryable(self) -> bool:
        """DNS failures may clear up; every other rejection is final."""
        return self.reason is RejectionReason.UNRESOLVABLE_HOST


@dataclass(frozen=True)
class _Network:
    """A CIDR block stored as integers for bit-mask containment checks."""

    cidr: str
    bits: int
    value: int
    prefix: int

    @property
    def mask(self) -> int:
        return ((1 << self.prefix) - 1) << (self.bits - self.prefix)

    def contains(self, packed: bytes) -> bool:
        if len(packed) * 8 != self.bits:
            return False
        return int.from_bytes(packed, "big") & self.mask == self.value & self.mask


def _parse_network(cidr: str) -> _Network:
    address, _, prefix = cidr.partition("/")
    packed = ipaddress.ip_address(address).packed
    bits = len(packed) * 8
    prefix_len = int(prefix)
    if not 0 <= prefix_len <= bits:
        raise ValueError(f"Invalid prefix length in {cidr}")
    return _Network(cidr, bits, int.from_bytes(packed, "big"), prefix_len)


_BLOCKED_NETWORKS = tuple(_parse_network(cidr) for cidr in BLOCKED_RANGES)


def packed_address(address: str) -> bytes:
    """Return the binary form of an IP address string.

    IPv6 zone ids are dropped and IPv4-mapped IPv6 addresses are unwrapped to
    their 4-byte IPv4 form so they are matched against the IPv4 ranges.

    Raises:
        ValueError: If ``address`` is not an IP address.
    """
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped.packed
    return ip.packed


def blocked_range_for(address: str) -> str | None:
    """Return the blocked CIDR range containing ``address``, if any."""
    packed = packed_address(address)
    for network in _BLOCKED_NETWORKS:
        if network.contains(packed):
            return network.cidr
    return None


def resolve_host(host: str) -> list[str]:
    """Resolve a hostname to its distinct addresses using the system resolver."""
    infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    return list(dict.fromkeys(str(info[4][0]) for info in infos))


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    return True


class DestinationValidator:
    """Validates candidate destination URLs against SSRF attacks."""

    def __init__(
        self,
        resolver: HostResolver = resolve_host,
        max_url_length: int = MAX_URL_LENGTH,
    ) -> None:
        self._resolver = resolver
        self._max_url_length = max_url_length

    def validate(self, url: str) -> None:
        """Validate a URL or raise.

        Args:
            url: The absolute URL to check.

        Raises:
            DestinationRejected: If the URL is malformed, uses a scheme other
                than http/https, is too long, cannot be resolved or resolves
                to a blocked address.
        """
        try:
            self._check(url)
        except DestinationRejected as e:
            logger.warning(
                "Destination rejected",
                url=url[:200],
                reason=e.reason.value,
                detail=e.detail,
            )
            raise

    def is_safe(self, url: str) -> bool:
        """Return True if ``url`` passes validation."""
        try:
            self._check(url)
        except DestinationRejected:
            return False
        return True

    def _check(self, url: str) -> None:
        if not url or any(ord(ch) <= 0x20 or ord(ch) == 0x7F for ch in url):
            raise DestinationRejected(RejectionReason.MALFORMED, "malformed URL: empty or contains whitespace")

        try:
            parts = urlsplit(url)
            host = parts.hostname
            port = parts.port
        except ValueError as e:
            raise DestinationRejected(RejectionReason.MALFORMED, f"malformed URL: {e}") from e

        if not parts.scheme:
            raise DestinationRejected(RejectionReason.MALFORMED, "malformed URL: missing scheme")
        if parts.scheme not in ALLOWED_SCHEMES:
            raise DestinationRejected(
                RejectionReason.INVALID_SCHEME,
                f"invalid URL scheme (must be http/https): {parts.scheme}",
            )
        if not host:
            raise DestinationRejected(RejectionReason.MALFORMED, "malformed URL: missing host")
        if port == 0:
            raise DestinationRejected(RejectionReason.MALFORMED, "malformed URL: port 0")
        if parts.username is not None or parts.password is not None:
            raise DestinationRejected(RejectionReason.MALFORMED, "malformed URL: credentials in URL")

        if len(url) > self._max_url_length:
            raise DestinationRejected(
                RejectionReason.TOO_LONG,
                f"URL too long ({len(url)} > {self._max_url_length} characters)",
            )

        for address in self._addresses_for(host):
            try:
                blocked = blocked_range_for(address)
            except ValueError as e:
                raise DestinationRejected(
                    RejectionReason.UNRESOLVABLE_HOST,
                    f"could not resolve host {host}: bad address {address!r}",
                ) from e
            if blocked is not None:
                raise DestinationRejected(
                    RejectionReason.BLOCKED_ADDRESS,
                    f"SSRF blocked address: {host} resolves to {address} in {blocked}",
                )

    def _addresses_for(self, host: str) -> list[str]:
        if _is_ip_literal(host):
            return [host]
        try:
            addresses = self._resolver(host)
        except (OSError, UnicodeError) as e:
            raise DestinationRejected(
                RejectionReason.UNRESOLVABLE_HOST, f"could not resolve host {host}: {e}"
            ) from e
        if not addresses:
            raise DestinationRejected(
                RejectionReason.UNRESOLVABLE_HOST, f"could not resolve host {host}: empty answer"
            )
        return addresses
