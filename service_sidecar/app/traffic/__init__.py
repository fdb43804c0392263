"""
Traffic recording for the sidecar's diagnostics view.
"""

from .middleware import TrafficMiddleware
from .recorder import TrafficLogEntry, TrafficRecorder

__all__ = [
    "TrafficLogEntry",
    "TrafficMiddleware",
    "TrafficRecorder",
]
