"""
Request dispatch for the sidecar.

Captures each inbound request once, runs the matching local handler, and
decides whether the outcome stands or is replayed against the remote
deployment.
"""

from .context import HandlerContext
from .dispatcher import DispatchOutcome, Dispatcher, OutcomeKind
from .inbound import InboundRequest, to_starlette_response

__all__ = [
    "DispatchOutcome",
    "Dispatcher",
    "HandlerContext",
    "InboundRequest",
    "OutcomeKind",
    "to_starlette_response",
]
