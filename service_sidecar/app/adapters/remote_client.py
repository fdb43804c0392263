"""
Remote deployment client for the sidecar.
"""

from typing import Iterable, Optional

import httpx

from shared.errors import UpstreamError
from shared.logging import get_logger

from ..dispatch.inbound import InboundRequest


class RemoteClient:
    """Replays captured requests against the hosted deployment."""

    def __init__(
        self,
        remote_base: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = remote_base.rstrip('/')
        self.logger = get_logger("sidecar.remote_client")
        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=False,
        )

    async def forward(self, inbound: InboundRequest, drop_headers: Iterable[str] = ()) -> httpx.Response:
        """Send ``inbound`` to the same path on the remote deployment.

        The remote's status and body come back unchanged; only a failure to
        complete the exchange raises.
        """
        request = inbound.build_request(self.base_url, drop_headers=drop_headers)
        try:
            response = await self.client.send(request)
        except httpx.HTTPError as e:
            self.logger.warning(
                "Remote request failed",
                method=inbound.method,
                path=inbound.path,
                error_type=type(e).__name__,
            )
            raise UpstreamError("Cloud fallback failed", reason=str(e) or type(e).__name__) from e

        self.logger.debug(
            "Remote response",
            method=inbound.method,
            path=inbound.path,
            status_code=response.status_code,
        )
        return response

    async def close(self):
        await self.client.aclose()
