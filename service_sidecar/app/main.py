"""
Local API sidecar service main application.
"""

import os
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional

import httpx
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import SidecarConfig, get_config
from shared.errors import BadRequestError, ErrorResponse, ForbiddenError, SSRFViolation

from .adapters import FeedClient, RemoteClient
from .credentials import SecretProbe, is_allowed_key
from .dispatch import Dispatcher, InboundRequest, to_starlette_response
from .listener import ServerBinding, SidecarServer
from .pipeline import CorsPolicy, ResponsePipelineMiddleware
from .registry import HandlerRegistry, resolve_api_dir
from .security import AccessControlMiddleware, AccessPolicy, SSRFGuard
from .security.ssrf import Resolver
from .traffic import TrafficMiddleware, TrafficRecorder

SERVICE_STATUS_PATH = "/api/service-status"
TRAFFIC_LOG_PATH = "/api/local-traffic-log"

BUILTIN_PATHS = frozenset({
    SERVICE_STATUS_PATH,
    "/api/local-status",
    "/api/local-env-update",
    "/api/local-validate-secret",
    TRAFFIC_LOG_PATH,
    "/api/local-debug-toggle",
    "/api/local-metrics",
    "/api/rss-proxy",
})

DISPATCH_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]


class EnvUpdate(BaseModel):
    key: str
    value: Optional[str] = None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SidecarService(BaseService):
    """Local API gateway service.

    ``transport`` replaces the network for every outbound client (remote
    fallback, handler egress, secret probes, feeds); ``environ`` is the
    mapping the environment-update route writes to.
    """

    def __init__(
        self,
        config: Optional[SidecarConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        environ: Optional[MutableMapping[str, str]] = None,
        resolver: Optional[Resolver] = None,
    ):
        config = config or get_config()
        self.environ = environ if environ is not None else os.environ
        self.access_policy = AccessPolicy(token=config.token)
        self.cors_policy = CorsPolicy(tuple(config.cors_allowed_origins))
        self.traffic = TrafficRecorder(config.traffic_log_size, verbose=config.verbose)
        self.binding = ServerBinding(config.host, config.port, config.port)

        super().__init__("sidecar", config)

        self.api_dir = resolve_api_dir(config.api_dir, config.resource_dir)
        self.registry = HandlerRegistry.discover(self.api_dir)
        self.ssrf_guard = SSRFGuard(resolver=resolver, resolve_hosts=config.resolve_feed_hosts)

        self.egress_client = httpx.AsyncClient(
            timeout=config.egress_timeout_seconds,
            transport=transport,
            follow_redirects=True,
        )
        self.remote_client = (
            RemoteClient(config.remote_base, config.remote_timeout_seconds, transport=transport)
            if config.remote_enabled else None
        )
        self.feed_client = FeedClient(
            self.ssrf_guard,
            timeout=config.feed_timeout_seconds,
            slow_timeout=config.feed_slow_timeout_seconds,
            max_redirects=config.feed_max_redirects,
            allowed_domains=config.feed_allowed_domains,
            transport=transport,
        )
        self.secret_probe = SecretProbe(config.probe_timeout_seconds, transport=transport, metrics=self.metrics)
        self.dispatcher = Dispatcher(
            self.registry,
            egress_client=self.egress_client,
            ssrf_guard=self.ssrf_guard,
            remote=self.remote_client,
            metrics=self.metrics,
            env=self.environ,
            strip_authorization=self.access_policy.enabled,
        )

        self.app.state.sidecar_service = self

    def _setup_middleware(self):
        """Install middleware, innermost first."""
        self.app.add_middleware(AccessControlMiddleware, policy=self.access_policy)
        self.app.add_middleware(ResponsePipelineMiddleware, cors=self.cors_policy)
        self.app.add_middleware(
            TrafficMiddleware,
            recorder=self.traffic,
            metrics=self.metrics,
            skip_paths=frozenset({TRAFFIC_LOG_PATH}),
        )
        super()._setup_middleware()

    def _setup_routes(self):
        """Set up routes."""
        self._setup_status_routes()
        self._setup_admin_routes()
        self._setup_diagnostic_routes()
        self._setup_feed_routes()
        self._setup_dispatch_route()

    def _setup_status_routes(self):
        @self.app.get(SERVICE_STATUS_PATH)
        async def service_status():
            """Liveness and binding report; readable without a token."""
            binding = self.binding
            services = [
                {
                    "id": "local-api",
                    "name": "Local API Sidecar",
                    "category": "local",
                    "status": "operational",
                    "description": f"Running on {binding.host}:{binding.port}",
                },
                {
                    "id": "cloud-fallback",
                    "name": "Cloud Fallback",
                    "category": "remote",
                    "status": "operational" if self.remote_client else "unknown",
                    "description": (
                        f"Forwarding to {self.config.remote_base}" if self.remote_client else "Disabled"
                    ),
                },
            ]
            summary = {
                status: sum(1 for service in services if service["status"] == status)
                for status in ("operational", "degraded", "outage", "unknown")
            }
            return {
                "success": True,
                "timestamp": utc_now(),
                "local": {**binding.to_dict(), "mode": self.config.mode},
                "summary": summary,
                "services": services,
            }

        @self.app.get("/api/local-status")
        async def local_status():
            """Gateway configuration and route table summary."""
            return {
                "success": True,
                "mode": self.config.mode,
                "host": self.binding.host,
                "port": self.binding.port,
                "requestedPort": self.binding.requested_port,
                "apiDir": str(self.api_dir) if self.api_dir else None,
                "remoteBase": self.config.remote_base,
                "cloudFallback": self.remote_client is not None,
                "authRequired": self.access_policy.enabled,
                "uptimeSeconds": round(self.uptime_seconds(), 3),
                "routes": [route.pattern for route in self.registry.routes],
                "failedRoutes": [failure.to_dict() for failure in self.registry.failures],
            }

    def _setup_admin_routes(self):
        @self.app.post("/api/local-env-update")
        async def local_env_update(update: EnvUpdate):
            """Set or clear one allowlisted environment key."""
            if not is_allowed_key(update.key):
                self.logger.warning("Rejected environment update", key=update.key)
                raise ForbiddenError("key not in allowlist")

            if update.value:
                self.environ[update.key] = update.value
            else:
                self.environ.pop(update.key, None)
            self.logger.info("Environment updated", key=update.key, cleared=not update.value)
            return {"ok": True, "key": update.key}

        @self.app.post("/api/local-validate-secret")
        async def local_validate_secret(candidate: EnvUpdate):
            """Probe a candidate secret without storing it."""
            if not is_allowed_key(candidate.key):
                raise ForbiddenError("key not in allowlist")

            result = await self.secret_probe.validate(candidate.key, candidate.value)
            return JSONResponse(status_code=result.status_code, content=result.to_dict())

    def _setup_diagnostic_routes(self):
        @self.app.get(TRAFFIC_LOG_PATH)
        async def traffic_log():
            return {
                "entries": [entry.to_dict() for entry in self.traffic.entries()],
                "verboseMode": self.traffic.verbose,
                "maxEntries": self.traffic.max_entries,
            }

        @self.app.delete(TRAFFIC_LOG_PATH)
        async def clear_traffic_log():
            self.traffic.clear()
            return {"ok": True}

        @self.app.get("/api/local-debug-toggle")
        async def debug_state():
            return {"verboseMode": self.traffic.verbose}

        @self.app.post("/api/local-debug-toggle")
        async def debug_toggle():
            verbose = self.traffic.toggle_verbose()
            self.logger.info("Verbose request logging toggled", verbose=verbose)
            return {"verboseMode": verbose}

        @self.app.get("/api/local-metrics")
        async def local_metrics():
            """Prometheus metrics endpoint."""
            return self.metrics_response()

    def _setup_feed_routes(self):
        @self.app.get("/api/rss-proxy")
        async def rss_proxy(url: Optional[str] = Query(default=None)):
            """Fetch a public RSS/Atom feed on behalf of the client."""
            if not url:
                raise BadRequestError("Missing url parameter")

            try:
                upstream = await self.feed_client.fetch(url)
            except SSRFViolation:
                self.metrics.record_ssrf_rejection()
                raise

            return Response(
                content=upstream.content,
                status_code=upstream.status_code,
                media_type="application/xml",
                headers={"Cache-Control": "public, max-age=300"},
            )

    def _setup_dispatch_route(self):
        @self.app.api_route("/api/{path:path}", methods=DISPATCH_METHODS)
        async def dispatch(request: Request, path: str):
            """Route everything else through the local handlers."""
            if request.url.path in BUILTIN_PATHS:
                body = ErrorResponse(error="Method not allowed").model_dump(exclude_none=True)
                return JSONResponse(status_code=405, content=body)

            inbound = await InboundRequest.capture(request)
            outcome = await self.dispatcher.dispatch(inbound)
            return to_starlette_response(outcome.response)

    def set_binding(self, binding: ServerBinding) -> None:
        self.binding = binding

    async def shutdown(self):
        await self.egress_client.aclose()
        await self.feed_client.close()
        await self.secret_probe.close()
        if self.remote_client:
            await self.remote_client.close()

    def server(self) -> SidecarServer:
        return SidecarServer(
            self.app,
            host=self.config.host,
            port=self.config.port,
            on_bound=self.set_binding,
            log_level=self.config.log_level,
        )

    def run(self):
        """Run the service."""
        self.server().run()


def create_app(config: Optional[SidecarConfig] = None, **kwargs: Any) -> FastAPI:
    """Create the FastAPI application."""
    service = SidecarService(config=config, **kwargs)
    return service.app


def main():
    SidecarService().run()


if __name__ == "__main__":
    main()
