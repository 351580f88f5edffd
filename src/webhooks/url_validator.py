"""Destination URL validation for SSRF prevention.

Every outbound webhook destination is checked before it is stored and
again right before each request is sent, because a hostname's DNS
answer can change between registration and delivery.
"""

import asyncio
import re
import socket
from collections.abc import Callable, Iterable
from ipaddress import IPv4Address, IPv6Address, ip_address, ip_network
from typing import NamedTuple
from urllib.parse import SplitResult, quote, urlsplit

import structlog

logger = structlog.get_logger(__name__)

BLOCKED_IP_RANGES = tuple(
    ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",  # "This network"
        "127.0.0.0/8",  # Loopback
        "10.0.0.0/8",  # Private network
        "172.16.0.0/12",  # Private network
        "192.168.0.0/16",  # Private network
        "169.254.0.0/16",  # Link-local, cloud metadata
        "100.64.0.0/10",  # Carrier-grade NAT
        "224.0.0.0/4",  # Multicast
        "240.0.0.0/4",  # Reserved
        "::1/128",  # IPv6 loopback
        "fc00::/7",  # IPv6 unique local
        "fe80::/10",  # IPv6 link-local
    )
)

BLOCKED_HOSTNAME_KEYWORDS = (
    "localhost",
    "local",
    "internal",
    "intranet",
    "private",
    "admin",
    "metadata",
)

ALLOWED_SCHEMES = ("http", "https")

_IPV4_LITERAL = re.compile(r"^\d+\.\d+\.\d+\.\d+$")
_HTTP_PREFIX = re.compile(r"^(https?://[^/]+)(.*)$", re.IGNORECASE | re.DOTALL)
# Reserved characters and existing escapes survive re-encoding
_RESERVED = "/?#[]@!$&'()*+,;=:%"

Resolver = Callable[[str], Iterable[str]]


class ValidationResult(NamedTuple):
    """Outcome of validating a destination URL."""

    valid: bool
    reason: str | None = None


def resolve_host(hostname: str) -> list[str]:
    """Resolve a hostname to its IP addresses with the system resolver.

    Raises:
        OSError: If resolution fails.
    """
    infos = socket.getaddrinfo(hostname, None, family=socket.AF_UNSPEC)
    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def is_blocked_ip(address: IPv4Address | IPv6Address) -> bool:
    """Check an address against the blocked ranges."""
    if isinstance(address, IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return any(
        address.version == network.version and address in network
        for network in BLOCKED_IP_RANGES
    )


def _is_parseable(url: str) -> bool:
    return not any(ch.isspace() or ord(ch) < 0x20 or ord(ch) > 0x7E for ch in url)


def _split(url: str) -> SplitResult:
    if not _is_parseable(url):
        raise ValueError(f"bad URI(is not URI?): {url!r}")
    parts = urlsplit(url)
    # Accessing the port validates it
    _ = parts.port
    return parts


class UrlValidator:
    """Classifies destination URLs as safe or unsafe.

    Example:
        validator = UrlValidator()
        valid, reason = validator.validate("https://api.example.com/hook")
    """

    def __init__(self, resolver: Resolver | None = None) -> None:
        """Initialize the validator.

        Args:
            resolver: Callable returning the IP addresses for a hostname.
                Defaults to the system resolver.
        """
        self._resolver = resolver or resolve_host
        self._logger = logger.bind(component="url_validator")

    def validate(self, url: str | None) -> ValidationResult:
        """Validate a destination URL.

        Checks run in order and stop at the first failure.

        Args:
            url: Candidate destination URL.

        Returns:
            ValidationResult with ``valid`` and a ``reason`` when invalid.
        """
        if url is None or not str(url).strip():
            return ValidationResult(False, "URL cannot be blank")
        url = str(url)

        try:
            parts = _split(url)
        except ValueError as e:
            match = _HTTP_PREFIX.match(url)
            if not match:
                return ValidationResult(False, f"Invalid URL format: {e}")
            encoded = match.group(1) + quote(match.group(2), safe=_RESERVED)
            try:
                parts = _split(encoded)
            except ValueError as encoding_error:
                return ValidationResult(False, f"Invalid URL format: {encoding_error}")

        if (parts.scheme or "").lower() not in ALLOWED_SCHEMES:
            return ValidationResult(False, "URL must use HTTP or HTTPS protocol")

        host = parts.hostname
        if not host:
            return ValidationResult(False, "URL must include a hostname")

        host_lower = host.lower()
        if any(keyword in host_lower for keyword in BLOCKED_HOSTNAME_KEYWORDS):
            return ValidationResult(False, "URL hostname contains blocked keyword")

        try:
            addresses = list(self._resolver(host))
        except (OSError, UnicodeError) as e:
            return ValidationResult(False, f"Unable to resolve hostname: {e}")

        if not addresses:
            return ValidationResult(False, "Hostname does not resolve to any IP addresses")

        for address in addresses:
            try:
                parsed = ip_address(address)
            except ValueError:
                continue
            if is_blocked_ip(parsed):
                self._logger.warning(
                    "url_resolves_to_blocked_ip",
                    host=host,
                    address=address,
                )
                return ValidationResult(
                    False, f"URL resolves to a blocked IP address ({address})"
                )

        if _IPV4_LITERAL.match(host) or ":" in host:
            try:
                literal = ip_address(host)
            except ValueError:
                literal = None
            if literal is not None and is_blocked_ip(literal):
                return ValidationResult(False, "URL uses a blocked IP address")

        return ValidationResult(True, None)

    async def validate_async(self, url: str | None) -> ValidationResult:
        """Validate a URL without blocking the event loop on DNS."""
        return await asyncio.to_thread(self.validate, url)

    def is_valid(self, url: str | None) -> bool:
        """Return True if the URL passes every check."""
        return self.validate(url).valid
