"""
Response pipeline for the sidecar.

Every response leaving the gateway passes through here for content
negotiation (brotli, gzip), CORS headers, and Vary merging.
"""

from .compression import MIN_COMPRESS_BYTES, compress, negotiate_encoding
from .middleware import CorsPolicy, ResponsePipelineMiddleware, merge_vary

__all__ = [
    "CorsPolicy",
    "MIN_COMPRESS_BYTES",
    "ResponsePipelineMiddleware",
    "compress",
    "merge_vary",
    "negotiate_encoding",
]
