"""
Response pipeline middleware: preflight answers, compression, CORS and Vary.
"""

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, Optional, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger

from .compression import MIN_COMPRESS_BYTES, compress, negotiate_encoding

ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"
MAX_AGE = "86400"

# Already compressed, or pointless to compress again.
INCOMPRESSIBLE_PREFIXES = ("image/", "video/", "audio/", "application/zip", "application/gzip")


def merge_vary(existing: Iterable[str], *additions: str) -> str:
    """Merge Vary tokens case-insensitively, keeping first-seen spelling."""
    tokens = []
    seen = set()
    for value in (*existing, *additions):
        for token in value.split(","):
            token = token.strip()
            if not token or token.lower() in seen:
                continue
            seen.add(token.lower())
            tokens.append(token)
    return "*" if "*" in seen else ", ".join(tokens)


@dataclass(frozen=True)
class CorsPolicy:
    """Which origins get their Origin echoed back.

    Entries are exact origins or shell-style patterns such as
    ``https://*.example.com``; ``*`` allows any origin.
    """

    allowed_origins: Tuple[str, ...] = ("*",)

    def allow_origin(self, origin: Optional[str]) -> Optional[str]:
        if "*" in self.allowed_origins:
            return origin or "*"
        if origin and any(fnmatchcase(origin, pattern) for pattern in self.allowed_origins):
            return origin
        return None

    def apply(self, response: Response, origin: Optional[str]) -> None:
        allowed = self.allow_origin(origin)
        if allowed:
            response.headers["Access-Control-Allow-Origin"] = allowed
        response.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
        response.headers["Access-Control-Max-Age"] = MAX_AGE


class ResponsePipelineMiddleware(BaseHTTPMiddleware):
    """Final shaping of every response.

    Runs outside access control so preflight requests are answered without
    a token.
    """

    def __init__(self, app, cors: CorsPolicy, min_compress_bytes: int = MIN_COMPRESS_BYTES):
        super().__init__(app)
        self.cors = cors
        self.min_compress_bytes = min_compress_bytes
        self.logger = get_logger("sidecar.pipeline")

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")

        if request.method == "OPTIONS":
            preflight = Response(status_code=204)
            self.cors.apply(preflight, origin)
            preflight.headers["Vary"] = merge_vary((), "Origin", "Accept-Encoding")
            return preflight

        downstream = await call_next(request)
        body = b"".join([chunk async for chunk in downstream.body_iterator])

        encoding = None
        if self._compressible(request, downstream, body):
            encoding = negotiate_encoding(request.headers.get("accept-encoding"))
            if encoding:
                original_size = len(body)
                body = compress(body, encoding)
                self.logger.debug(
                    "Compressed response",
                    path=request.url.path,
                    encoding=encoding,
                    original_bytes=original_size,
                    compressed_bytes=len(body),
                )

        response = Response(content=body, status_code=downstream.status_code)
        response.raw_headers.extend(
            (key, value) for key, value in downstream.raw_headers
            if key.lower() not in (b"content-length", b"vary")
        )
        if encoding:
            response.headers["Content-Encoding"] = encoding

        response.headers["Vary"] = merge_vary(downstream.headers.getlist("vary"), "Origin", "Accept-Encoding")
        self.cors.apply(response, origin)
        return response

    def _compressible(self, request: Request, response: Response, body: bytes) -> bool:
        if request.method == "HEAD" or response.status_code in (204, 304):
            return False
        if len(body) <= self.min_compress_bytes:
            return False
        if response.headers.get("content-encoding"):
            return False
        content_type = response.headers.get("content-type", "").lower()
        return not content_type.startswith(INCOMPRESSIBLE_PREFIXES)
