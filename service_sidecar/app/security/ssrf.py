"""
SSRF guard for URLs fetched on behalf of a caller.

Literal checks catch loopback, private, link-local and other non-public
addresses written into the URL. ``check_resolved`` also resolves the host
name and applies the same rules to every address it maps to, which closes
the DNS-alias route to internal hosts but not rebinding between check and
connect.
"""

import asyncio
import ipaddress
import socket
from typing import Awaitable, Callable, List, Optional, Sequence, Union

import httpx

from shared.errors import SSRFViolation
from shared.logging import get_logger

ALLOWED_SCHEMES = ("http", "https")

MSG_SCHEME = "Only http and https protocols are allowed"
MSG_CREDENTIALS = "URLs with credentials are not allowed"
MSG_PRIVATE = "Access to private/localhost addresses is not allowed"
MSG_INVALID = "Invalid URL"

LOCALHOST_NAMES = ("localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Resolver = Callable[[str], Awaitable[Sequence[str]]]


async def system_resolver(host: str) -> List[str]:
    """Resolve ``host`` through the event loop's getaddrinfo."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def _parse_ip(host: str) -> Optional[IPAddress]:
    candidate = host.strip("[]").split("%", 1)[0]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        pass
    # Single-integer IPv4 forms such as http://2130706433/
    if candidate.isdigit():
        try:
            return ipaddress.IPv4Address(int(candidate))
        except ipaddress.AddressValueError:
            return None
    return None


def is_blocked_address(ip: IPAddress) -> bool:
    """True for any address that is not publicly routable."""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_multicast
        or ip.is_reserved
    )


def is_blocked_host(host: str) -> bool:
    host = host.lower().rstrip(".")
    if host in LOCALHOST_NAMES or host.endswith(".localhost"):
        return True
    ip = _parse_ip(host)
    return ip is not None and is_blocked_address(ip)


class SSRFGuard:
    """Validates outbound URLs before the gateway fetches them."""

    def __init__(self, resolver: Optional[Resolver] = None, resolve_hosts: bool = True):
        self.resolver = resolver or system_resolver
        self.resolve_hosts = resolve_hosts
        self.logger = get_logger("sidecar.ssrf")

    def check(self, url: str) -> httpx.URL:
        """Validate ``url`` without any network I/O.

        Returns the parsed URL, or raises :class:`SSRFViolation` naming the
        rule that was broken.
        """
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            raise SSRFViolation(MSG_INVALID) from e

        if parsed.scheme not in ALLOWED_SCHEMES:
            self._reject(parsed.host, MSG_SCHEME)
        if parsed.userinfo:
            self._reject(parsed.host, MSG_CREDENTIALS)
        if not parsed.host:
            self._reject(parsed.host, MSG_INVALID)
        if is_blocked_host(parsed.host):
            self._reject(parsed.host, MSG_PRIVATE)
        return parsed

    async def check_resolved(self, url: str) -> httpx.URL:
        """Validate ``url`` and every address its host resolves to.

        Resolution failures are not violations; the fetch that follows will
        fail on its own.
        """
        parsed = self.check(url)
        if not self.resolve_hosts or _parse_ip(parsed.host) is not None:
            return parsed

        try:
            addresses = await self.resolver(parsed.host)
        except OSError as e:
            self.logger.debug("Host resolution failed", host=parsed.host, error=str(e))
            return parsed

        for address in addresses:
            ip = _parse_ip(address)
            if ip is not None and is_blocked_address(ip):
                self._reject(parsed.host, MSG_PRIVATE)
        return parsed

    def _reject(self, host: str, message: str) -> None:
        self.logger.warning("Outbound URL rejected", host=host, reason=message)
        raise SSRFViolation(message)
