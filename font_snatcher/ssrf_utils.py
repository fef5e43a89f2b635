"""
Outbound fetch safety (SSRF guard).

Every URL the server is about to fetch (the target page, cross-host
stylesheets, font binaries and each hop of a font redirect chain) goes
through `SsrfGuard.assert_safe_target_url` first. A single check never
covers a multi-hop fetch; callers re-run it per hop.

Hostnames are resolved with dnspython and the answers are cached per host
in a `DnsCache` owned by the guard, so one crawl does not hammer the
resolver with the same lookups.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import dns.exception
import dns.resolver

from .constants import DNS_CACHE_TTL_SECONDS, DNS_NEGATIVE_CACHE_TTL_SECONDS, DNS_TIMEOUT_SECONDS
from .errors import UnsafeTargetError

logger = logging.getLogger(__name__)

BLOCKED_HOST_SUFFIXES = (".local", ".localhost", ".internal", ".test")

IPV6_BLOCKED_NETWORKS = (
    ipaddress.IPv6Network("::/128"),      # unspecified
    ipaddress.IPv6Network("::1/128"),     # loopback
    ipaddress.IPv6Network("fe80::/10"),   # link-local
    ipaddress.IPv6Network("fc00::/7"),    # unique-local (fc00::/8 + fd00::/8)
)

Resolver = Callable[[str], List[str]]


# ───────────────────────── classification ─────────────────────────

def is_blocked_hostname(hostname: str) -> bool:
    normalized = hostname.lower().rstrip(".")
    if normalized == "localhost":
        return True
    return normalized.endswith(BLOCKED_HOST_SUFFIXES)


def _ipv4_octets(address: str) -> Optional[Tuple[int, int, int, int]]:
    """Four dotted decimal octets in 0..255, or None."""
    segments = address.split(".")
    if len(segments) != 4:
        return None
    octets = []
    for segment in segments:
        if not segment.isdigit() or not segment.isascii():
            return None
        value = int(segment)
        if value > 255:
            return None
        octets.append(value)
    return tuple(octets)  # type: ignore[return-value]


def detect_ip_version(address: str) -> int:
    """4 or 6 for a literal address, 0 for anything else (e.g. a hostname)."""
    if _ipv4_octets(address) is not None:
        return 4
    try:
        ipaddress.IPv6Address(address)
    except ValueError:
        return 0
    return 6


def _is_private_ipv4(octets: Tuple[int, int, int, int]) -> bool:
    a, b = octets[0], octets[1]

    if a in (0, 10, 127):
        return True
    if a == 100 and 64 <= b <= 127:
        return True
    if a == 169 and b == 254:
        return True
    if a == 172 and 16 <= b <= 31:
        return True
    if a == 192 and b in (0, 168):
        return True
    if a == 198 and b in (18, 19, 51):
        return True
    if a == 203 and b == 0:
        return True
    # Multicast and everything reserved above it.
    if a >= 224:
        return True
    return False


def _is_private_ipv6(address: ipaddress.IPv6Address) -> bool:
    if any(address in network for network in IPV6_BLOCKED_NETWORKS):
        return True
    mapped = address.ipv4_mapped
    if mapped is not None:
        return _is_private_ipv4(tuple(mapped.packed))  # type: ignore[arg-type]
    return False


def is_private_ip_address(address: str) -> bool:
    """
    True when `address` is private, loopback, link-local, unique-local,
    multicast or reserved.

    Anything that does not parse as an IP address counts as private, so a
    garbage DNS answer can never make a host look safe.
    """
    octets = _ipv4_octets(address)
    if octets is not None:
        return _is_private_ipv4(octets)
    try:
        v6 = ipaddress.IPv6Address(address)
    except ValueError:
        return True
    return _is_private_ipv6(v6)


# ───────────────────────── DNS resolution ─────────────────────────

class DnsCache:
    """
    hostname → addresses, each entry valid for `ttl_seconds`.

    Empty answers (the name did not resolve) only live for
    `negative_ttl_seconds`. Expired entries are dropped when read and swept
    on every write. Entries are never mutated after they are written, so
    concurrent readers at worst trigger a redundant lookup.
    """

    def __init__(
        self,
        ttl_seconds: float = DNS_CACHE_TTL_SECONDS,
        clock=time.monotonic,
        negative_ttl_seconds: float = DNS_NEGATIVE_CACHE_TTL_SECONDS,
    ):
        self.ttl_seconds = ttl_seconds
        self.negative_ttl_seconds = negative_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Tuple[str, ...], float]] = {}

    def get(self, hostname: str) -> Optional[List[str]]:
        entry = self._entries.get(hostname)
        if entry is None:
            return None
        addresses, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(hostname, None)
            return None
        return list(addresses)

    def put(self, hostname: str, addresses: List[str]) -> None:
        now = self._clock()
        self._sweep(now)
        ttl = self.ttl_seconds if addresses else self.negative_ttl_seconds
        self._entries[hostname] = (tuple(addresses), now + ttl)

    def _sweep(self, now: float) -> None:
        stale = [host for host, (_, expires_at) in list(self._entries.items()) if expires_at <= now]
        for host in stale:
            self._entries.pop(host, None)

    def __len__(self) -> int:
        return len(self._entries)


def _get_resolver() -> dns.resolver.Resolver:
    r = dns.resolver.Resolver(configure=True)
    r.lifetime = DNS_TIMEOUT_SECONDS
    r.timeout = DNS_TIMEOUT_SECONDS
    return r


def resolve_host_addresses(hostname: str) -> List[str]:
    """All A and AAAA answers for `hostname`; an empty list when nothing resolves."""
    resolver = _get_resolver()
    addresses: List[str] = []
    for record_type in ("A", "AAAA"):
        try:
            answers = resolver.resolve(hostname, record_type)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
            continue
        except dns.exception.DNSException as exc:
            # Timeouts and friends: treat as "no answer" so the guard refuses.
            logger.warning("DNS %s lookup for %s failed: %s", record_type, hostname, exc)
            continue
        for record in answers:
            value = record.to_text()
            if detect_ip_version(value):
                addresses.append(value)
    return addresses


# ───────────────────────── the guard ─────────────────────────

class SsrfGuard:
    """Refuses URLs that are not provably safe to fetch from this server."""

    def __init__(self, resolver: Optional[Resolver] = None, cache: Optional[DnsCache] = None):
        self.resolver = resolver or resolve_host_addresses
        self.cache = cache if cache is not None else DnsCache()

    def resolve(self, hostname: str) -> List[str]:
        cached = self.cache.get(hostname)
        if cached is not None:
            return cached
        addresses = self.resolver(hostname)
        self.cache.put(hostname, addresses)
        return addresses

    def assert_safe_target_url(self, url: str) -> None:
        """
        Raise `UnsafeTargetError` unless `url` is http(s) and every address
        its host resolves to is public.
        """
        try:
            parts = urlsplit(url)
            hostname = parts.hostname or ""
        except ValueError:
            raise UnsafeTargetError("Invalid target URL.")

        if parts.scheme not in ("http", "https"):
            raise UnsafeTargetError("Only http/https URLs are allowed.")

        hostname = hostname.rstrip(".")
        if not hostname:
            raise UnsafeTargetError("Invalid target URL.")

        if is_blocked_hostname(hostname):
            raise UnsafeTargetError("Blocked target host.")

        if detect_ip_version(hostname):
            if is_private_ip_address(hostname):
                raise UnsafeTargetError("Blocked private target IP.")
            return

        addresses = self.resolve(hostname)
        if not addresses:
            raise UnsafeTargetError("Unable to resolve target host.")

        for address in addresses:
            if is_private_ip_address(address):
                logger.warning("Refusing %s: %s resolves to %s", url, hostname, address)
                raise UnsafeTargetError("Blocked private target IP.")
