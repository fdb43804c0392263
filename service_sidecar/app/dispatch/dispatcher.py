"""
Local-first dispatcher with remote fallback.

Decision table for a captured request:

    no route, fallback off       -> 404, NOT_FOUND
    no route, fallback on        -> remote response, REMOTE_ONLY
    handler raised / bad return  -> 502, HANDLER_FAULT (never retried)
    handler status >= 500, on    -> remote response, FELL_BACK_TO_REMOTE
    anything else                -> handler response, SERVED_LOCAL
"""

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

import httpx
from starlette.concurrency import run_in_threadpool

from shared.errors import HandlerFault, NotFoundError, SidecarError, UpstreamError
from shared.logging import get_logger, set_route
from shared.metrics import MetricsCollector

from ..registry import HandlerRegistry, Route
from ..security.ssrf import SSRFGuard
from .context import HandlerContext
from .inbound import InboundRequest

if TYPE_CHECKING:
    from ..adapters.remote_client import RemoteClient


class OutcomeKind(Enum):
    SERVED_LOCAL = "served_local"
    FELL_BACK_TO_REMOTE = "fell_back_to_remote"
    REMOTE_ONLY = "remote_only"
    NOT_FOUND = "not_found"
    HANDLER_FAULT = "handler_fault"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of dispatching one request."""

    kind: OutcomeKind
    response: httpx.Response
    route: Optional[str] = None
    reason: Optional[str] = None


def error_response(error: SidecarError) -> httpx.Response:
    return httpx.Response(error.status_code, json=error.to_dict())


class Dispatcher:
    """Runs local handlers and decides when to fall back to the remote."""

    def __init__(
        self,
        registry: HandlerRegistry,
        egress_client: httpx.AsyncClient,
        ssrf_guard: SSRFGuard,
        remote: Optional["RemoteClient"] = None,
        metrics: Optional[MetricsCollector] = None,
        env: Optional[Mapping[str, str]] = None,
        strip_authorization: bool = False,
    ):
        self.registry = registry
        self.egress_client = egress_client
        self.ssrf_guard = ssrf_guard
        self.remote = remote
        self.metrics = metrics
        self.env = env if env is not None else {}
        # The gateway's own token is not a credential for anything downstream.
        self.drop_headers = ("authorization",) if strip_authorization else ()
        self.logger = get_logger("sidecar.dispatcher")

    @property
    def fallback_enabled(self) -> bool:
        return self.remote is not None

    async def dispatch(self, inbound: InboundRequest) -> DispatchOutcome:
        matched = self.registry.match(inbound.path)

        if matched is None:
            if not self.fallback_enabled:
                outcome = DispatchOutcome(OutcomeKind.NOT_FOUND, error_response(NotFoundError()))
            else:
                outcome = await self._remote_only(inbound)
            return self._finish(inbound, outcome)

        route, params = matched
        set_route(route.pattern)

        try:
            response = await self._invoke(route, params, inbound)
        except Exception as e:
            reason = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            self.logger.error(
                "Local handler raised",
                route=route.pattern,
                method=inbound.method,
                error_type=type(e).__name__,
                exc_info=True,
            )
            fault = HandlerFault(reason=reason)
            outcome = DispatchOutcome(OutcomeKind.HANDLER_FAULT, error_response(fault), route.pattern, reason)
            return self._finish(inbound, outcome)

        if response.status_code >= 500 and self.fallback_enabled:
            outcome = await self._fall_back(inbound, route, response)
        else:
            outcome = DispatchOutcome(OutcomeKind.SERVED_LOCAL, response, route.pattern)
        return self._finish(inbound, outcome)

    async def _invoke(self, route: Route, params: Mapping[str, str], inbound: InboundRequest) -> httpx.Response:
        request = inbound.build_request(inbound.base_url, drop_headers=self.drop_headers)
        context = HandlerContext(
            params=dict(params),
            route=route.pattern,
            client=self.egress_client,
            ssrf_guard=self.ssrf_guard,
            logger=get_logger(f"sidecar.handler.{route.source.stem}"),
            env=self.env,
        )

        if inspect.iscoroutinefunction(route.handler):
            result: Any = await route.handler(request, context)
        else:
            result = await run_in_threadpool(route.handler, request, context)
            if inspect.isawaitable(result):
                result = await result

        if not isinstance(result, httpx.Response):
            raise TypeError(f"handler returned {type(result).__name__}, expected httpx.Response")

        await result.aread()
        return result

    async def _remote_only(self, inbound: InboundRequest) -> DispatchOutcome:
        try:
            response = await self.remote.forward(inbound, drop_headers=self.drop_headers)
        except UpstreamError as e:
            self._record_remote("no_route", "error")
            return DispatchOutcome(OutcomeKind.REMOTE_ONLY, error_response(e), reason=e.reason)

        self._record_remote("no_route", "ok")
        return DispatchOutcome(OutcomeKind.REMOTE_ONLY, response)

    async def _fall_back(self, inbound: InboundRequest, route: Route, local: httpx.Response) -> DispatchOutcome:
        self.logger.warning(
            "Local handler failed, replaying against remote",
            route=route.pattern,
            method=inbound.method,
            local_status=local.status_code,
        )
        try:
            response = await self.remote.forward(inbound, drop_headers=self.drop_headers)
        except UpstreamError as e:
            self._record_remote("local_error", "error")
            self.logger.warning("Remote fallback failed, keeping local response", route=route.pattern, reason=e.reason)
            return DispatchOutcome(OutcomeKind.SERVED_LOCAL, local, route.pattern, e.reason)

        self._record_remote("local_error", "ok")
        return DispatchOutcome(OutcomeKind.FELL_BACK_TO_REMOTE, response, route.pattern)

    def _record_remote(self, reason: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_remote_call(reason, result)

    def _finish(self, inbound: InboundRequest, outcome: DispatchOutcome) -> DispatchOutcome:
        if self.metrics:
            self.metrics.record_dispatch(outcome.kind.value)
        self.logger.debug(
            "Dispatched",
            method=inbound.method,
            path=inbound.path,
            outcome=outcome.kind.value,
            status_code=outcome.response.status_code,
        )
        return outcome
