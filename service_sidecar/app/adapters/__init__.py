"""
HTTP adapters for the sidecar.

Provides thin httpx clients for the remote deployment (fallback target) and
for RSS/Atom feeds fetched through the feed proxy route.
"""

from .feed_client import FeedClient
from .remote_client import RemoteClient

__all__ = [
    "FeedClient",
    "RemoteClient",
]
