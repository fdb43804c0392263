"""
Context handed to local handlers alongside their request.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from ..security.ssrf import SSRFGuard


@dataclass(frozen=True)
class HandlerContext:
    """What a handler may use besides its request.

    ``client`` is the gateway-owned egress client with a bounded timeout;
    handlers that fetch user-supplied URLs should pass them through
    ``ssrf_guard`` first.
    """

    params: Mapping[str, str]
    route: str
    client: httpx.AsyncClient
    ssrf_guard: SSRFGuard
    logger: Any
    env: Mapping[str, str] = field(default_factory=dict)

    def param(self, name: str, default: str = "") -> str:
        return self.params.get(name, default)
