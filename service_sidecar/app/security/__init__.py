"""
Security controls for the sidecar: the bearer-token gate on inbound
requests and the SSRF guard on outbound fetches.
"""

from .access_control import AccessControlMiddleware, AccessPolicy
from .ssrf import SSRFGuard

__all__ = [
    "AccessControlMiddleware",
    "AccessPolicy",
    "SSRFGuard",
]
