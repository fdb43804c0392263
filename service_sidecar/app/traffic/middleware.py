"""
Middleware feeding the traffic recorder, request metrics and access logs.
"""

import time
from typing import FrozenSet

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .recorder import TrafficRecorder


class TrafficMiddleware(BaseHTTPMiddleware):
    """Times each request and records it once the response is ready."""

    def __init__(
        self,
        app,
        recorder: TrafficRecorder,
        metrics: MetricsCollector,
        skip_paths: FrozenSet[str] = frozenset(),
    ):
        super().__init__(app)
        self.recorder = recorder
        self.metrics = metrics
        self.skip_paths = skip_paths
        self.logger = get_logger("sidecar.traffic")

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        path = request.url.path
        self.metrics.record_http_request(
            method=request.method,
            endpoint=path,
            status_code=response.status_code,
            duration=duration,
        )
        if path in self.skip_paths:
            return response

        entry = self.recorder.record(request.method, path, response.status_code, duration * 1000)
        log = self.logger.info if self.recorder.verbose else self.logger.debug
        log(
            "HTTP request",
            method=entry.method,
            path=entry.path,
            status_code=entry.status,
            duration_ms=entry.duration_ms,
        )
        return response
