"""
Bearer-token access control for the sidecar.
"""

import hmac
from dataclasses import dataclass
from typing import FrozenSet, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import UnauthorizedError
from shared.logging import get_logger

# Readable without a token so the client can tell the sidecar is up.
EXEMPT_PATHS: FrozenSet[str] = frozenset({"/api/service-status"})


@dataclass(frozen=True)
class AccessPolicy:
    """Optional shared secret plus the paths that never require it."""

    token: Optional[str] = None
    exempt_paths: FrozenSet[str] = EXEMPT_PATHS

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def is_exempt(self, method: str, path: str) -> bool:
        if method.upper() == "OPTIONS":
            return True
        # Exact match only; a trailing slash reaches the dispatcher, not the status route.
        return path in self.exempt_paths

    def authorize(self, authorization: Optional[str]) -> bool:
        """Constant-time check of an ``Authorization: Bearer`` header."""
        if not self.enabled:
            return True
        if not authorization or authorization[:7].lower() != "bearer ":
            return False

        presented = authorization[7:]
        return hmac.compare_digest(presented.encode("utf-8"), self.token.encode("utf-8"))


class AccessControlMiddleware(BaseHTTPMiddleware):
    """Rejects requests without the configured bearer token."""

    def __init__(self, app, policy: AccessPolicy):
        super().__init__(app)
        self.policy = policy
        self.logger = get_logger("sidecar.access")

    async def dispatch(self, request: Request, call_next):
        if not self.policy.enabled or self.policy.is_exempt(request.method, request.url.path):
            return await call_next(request)

        if not self.policy.authorize(request.headers.get("authorization")):
            self.logger.warning(
                "Unauthorized request",
                method=request.method,
                path=request.url.path,
                has_credentials="authorization" in request.headers,
            )
            error = UnauthorizedError()
            return JSONResponse(status_code=error.status_code, content=error.to_dict())

        return await call_next(request)
