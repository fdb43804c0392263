"""
Handler discovery for the sidecar.

Builds an immutable, specificity-ordered route table from the handler
modules found under the API directory.
"""

from .loader import HandlerRegistry, LoadFailure, Route, Segment, SegmentKind, resolve_api_dir

__all__ = [
    "HandlerRegistry",
    "LoadFailure",
    "Route",
    "Segment",
    "SegmentKind",
    "resolve_api_dir",
]
