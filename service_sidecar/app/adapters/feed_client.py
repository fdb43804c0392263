"""
Feed client used by the RSS proxy route.
"""

from typing import Optional, Sequence

import httpx

from shared.errors import ForbiddenError, UpstreamError, UpstreamTimeout
from shared.logging import get_logger

from ..security.ssrf import SSRFGuard

FEED_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/rss+xml, application/xml, text/xml, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

SLOW_FEED_HOSTS = ("news.google.com",)


class FeedClient:
    """Fetches feeds with the SSRF guard applied to every redirect hop."""

    def __init__(
        self,
        ssrf_guard: SSRFGuard,
        timeout: float = 12.0,
        slow_timeout: float = 20.0,
        max_redirects: int = 5,
        allowed_domains: Sequence[str] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ssrf_guard = ssrf_guard
        self.timeout = timeout
        self.slow_timeout = slow_timeout
        self.max_redirects = max_redirects
        self.allowed_domains = frozenset(domain.lower() for domain in allowed_domains)
        self.logger = get_logger("sidecar.feed_client")
        self.client = httpx.AsyncClient(
            headers=FEED_HEADERS,
            transport=transport,
            follow_redirects=False,
        )

    def timeout_for(self, url: httpx.URL) -> float:
        return self.slow_timeout if url.host in SLOW_FEED_HOSTS else self.timeout

    async def _validate(self, url: str) -> httpx.URL:
        target = await self.ssrf_guard.check_resolved(url)
        if self.allowed_domains and target.host.lower() not in self.allowed_domains:
            raise ForbiddenError("Domain not allowed")
        return target

    async def fetch(self, url: str) -> httpx.Response:
        """Fetch ``url``, following at most ``max_redirects`` checked hops."""
        target = await self._validate(url)
        timeout = self.timeout_for(target)

        for _ in range(self.max_redirects + 1):
            try:
                response = await self.client.get(target, timeout=timeout)
            except httpx.TimeoutException as e:
                self.logger.warning("Feed timeout", host=target.host, timeout=timeout)
                raise UpstreamTimeout("Feed timeout", reason=str(e) or type(e).__name__) from e
            except httpx.HTTPError as e:
                self.logger.warning("Feed fetch failed", host=target.host, error_type=type(e).__name__)
                raise UpstreamError("Failed to fetch feed", reason=str(e) or type(e).__name__) from e

            location = response.headers.get("location")
            if not response.is_redirect or not location:
                self.logger.debug("Feed fetched", host=target.host, status_code=response.status_code)
                return response

            target = await self._validate(str(target.join(location)))

        raise UpstreamError("Failed to fetch feed", reason="Too many redirects")

    async def close(self):
        await self.client.aclose()
