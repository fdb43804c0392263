"""
Inbound request capture.

The body of an inbound request is read exactly once into ``bytes``. Every
consumer (the local handler, the remote fallback) gets its own
``httpx.Request`` built from that buffer, so nothing a handler does to its
copy can affect what the remote receives.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Tuple

import httpx
from fastapi import Request
from starlette.responses import Response

BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Never forwarded: browser origin, and headers the outbound client recomputes.
STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length", "origin", "accept-encoding"}

# httpx has already decoded the body these describe.
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


@dataclass(frozen=True)
class InboundRequest:
    """Immutable snapshot of a request received by the gateway."""

    method: str
    path: str
    query: str
    headers: Tuple[Tuple[str, str], ...]
    body: bytes
    base_url: str = "http://127.0.0.1"

    @classmethod
    async def capture(cls, request: Request) -> "InboundRequest":
        method = request.method.upper()
        body = b"" if method in BODYLESS_METHODS else await request.body()
        # Keep the path as sent so percent-encoding survives the trip onward.
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else request.url.path
        return cls(
            method=method,
            path=path,
            query=request.url.query,
            headers=tuple((key.lower(), value) for key, value in request.headers.items()),
            body=body,
            base_url=str(request.base_url).rstrip("/"),
        )

    @property
    def path_with_query(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    def header(self, name: str, default: str = "") -> str:
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return default

    def forward_headers(self, drop: Iterable[str] = ()) -> List[Tuple[str, str]]:
        """Headers safe to send onward: no origin, no hop-by-hop."""
        dropped: FrozenSet[str] = STRIPPED_REQUEST_HEADERS | {name.lower() for name in drop}
        return [(key, value) for key, value in self.headers if key not in dropped]

    def build_request(self, base_url: str, drop_headers: Iterable[str] = ()) -> httpx.Request:
        """Build a fresh outbound request carrying the buffered body."""
        url = f"{base_url.rstrip('/')}{self.path_with_query}"
        content = None if self.method in BODYLESS_METHODS and not self.body else self.body
        return httpx.Request(
            self.method,
            url,
            headers=self.forward_headers(drop_headers),
            content=content,
        )


def to_starlette_response(response: httpx.Response) -> Response:
    """Convert a fully read ``httpx.Response`` into a Starlette response."""
    converted = Response(content=response.content, status_code=response.status_code)
    for key, value in response.headers.multi_items():
        if key.lower() in STRIPPED_RESPONSE_HEADERS:
            continue
        converted.headers.append(key, value)
    return converted
