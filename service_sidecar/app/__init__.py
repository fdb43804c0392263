"""
Local API sidecar service package.

The sidecar runs a packaged client's server-side handlers on the user's
machine and forwards to the hosted deployment when enabled:
- Discovery: handler modules found under the API directory at startup
- Dispatch: local first, remote fallback on failure, body captured once
- Security: bearer-token gate and SSRF guard for outbound fetches
- Diagnostics: status, traffic log, secret probes, Prometheus metrics

Structure:
- app.main: FastAPI app, built-in routes, and middleware wiring.
- app.registry: Handler discovery and route matching.
- app.dispatch: Inbound capture, handler context, and the dispatcher.
- app.adapters: HTTP clients for the remote deployment and feeds.
- app.security: Access control middleware and the SSRF guard.
- app.credentials: Allowlist and live credential probes.
- app.pipeline: Compression, CORS, and Vary handling.
- app.traffic: Request ring buffer and its middleware.
- app.listener: Socket binding with port-conflict recovery.
"""
