"""
Base service class for the local API sidecar.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import SidecarConfig, get_config
from shared.errors import ErrorResponse, SidecarError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector


class BaseService:
    """Base service class with common functionality."""

    def __init__(
        self,
        service_name: str,
        config: Optional[SidecarConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.service_name = service_name
        self.config = config or get_config()

        # Configure logging
        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = metrics or get_metrics_collector(service_name)
        self._start_time = time.time()

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()
        self._setup_exception_handlers()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Local API {self.service_name.title()}",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url=None,
            openapi_url="/openapi.json" if self.config.env == "local" else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.startup()
        try:
            yield
        finally:
            await self.shutdown()

    async def startup(self):
        """Acquire resources. Override in subclasses."""

    async def shutdown(self):
        """Release resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware. Subclasses add theirs before calling this."""

        @self.app.middleware("http")
        async def bind_request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get("x-request-id"))
            try:
                response = await call_next(request)
            finally:
                clear_context()
            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        """Set up routes. Override in subclasses."""

    def _setup_exception_handlers(self):
        """Map errors onto ``{"error": ...}`` JSON bodies."""

        @self.app.exception_handler(SidecarError)
        async def sidecar_exception_handler(request: Request, exc: SidecarError):
            self.logger.warning(
                "Request failed",
                path=request.url.path,
                status_code=exc.status_code,
                error=exc.message,
            )
            self.metrics.record_error(type(exc).__name__)
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            body = ErrorResponse(error=str(exc.detail)).model_dump(exclude_none=True)
            return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            first = exc.errors()[0] if exc.errors() else {}
            body = ErrorResponse(
                error="Invalid request",
                reason=str(first.get("msg")) if first else None,
            ).model_dump(exclude_none=True)
            return JSONResponse(status_code=422, content=body)

        # Served by ServerErrorMiddleware, outside every user middleware: this 500
        # carries no CORS or Vary headers and is not in the traffic log.
        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("unhandled")
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error="Internal server error").model_dump(exclude_none=True),
            )

    def metrics_response(self) -> Response:
        """Prometheus exposition of this service's registry."""
        return Response(content=self.metrics.render(), media_type=self.metrics.content_type)

    def uptime_seconds(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time
