"""
Live credential probes.

A probe makes one cheap authenticated call to the provider and maps the
answer onto a verdict the settings UI can show. Bot-challenge pages served
in front of a provider are not treated as a rejection: the key is stored
and marked unverified.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .keys import RELAY_URL_KEYS

REJECTION_STATUSES = frozenset({400, 401, 403})
CHALLENGE_HEADERS = ("cf-ray", "cf-mitigated")
RELAY_SCHEMES = ("ws", "wss", "http", "https")


class AuthPlacement(Enum):
    BEARER = "bearer"
    HEADER = "header"
    QUERY = "query"


@dataclass(frozen=True)
class ProviderSpec:
    """Where and how to present a provider key for verification."""

    name: str
    url: str
    placement: AuthPlacement
    field: str = ""
    params: Tuple[Tuple[str, str], ...] = ()
    # Statuses that still prove the key was accepted.
    accepted_statuses: FrozenSet[int] = frozenset()

    def build_request(self, value: str) -> httpx.Request:
        headers = {"Accept": "application/json"}
        params = dict(self.params)
        if self.placement is AuthPlacement.BEARER:
            headers["Authorization"] = f"Bearer {value}"
        elif self.placement is AuthPlacement.HEADER:
            headers[self.field] = value
        else:
            params[self.field] = value
        return httpx.Request("GET", self.url, headers=headers, params=params)


PROVIDERS: Dict[str, ProviderSpec] = {
    "GROQ_API_KEY": ProviderSpec(
        "Groq", "https://api.groq.com/openai/v1/models", AuthPlacement.BEARER,
    ),
    "OPENROUTER_API_KEY": ProviderSpec(
        "OpenRouter", "https://openrouter.ai/api/v1/auth/key", AuthPlacement.BEARER,
    ),
    "CLOUDFLARE_API_TOKEN": ProviderSpec(
        "Cloudflare", "https://api.cloudflare.com/client/v4/user/tokens/verify", AuthPlacement.BEARER,
    ),
    "ACLED_ACCESS_TOKEN": ProviderSpec(
        "ACLED", "https://acleddata.com/api/acled/read", AuthPlacement.BEARER,
        params=(("limit", "1"),),
    ),
    "FRED_API_KEY": ProviderSpec(
        "FRED", "https://api.stlouisfed.org/fred/series", AuthPlacement.QUERY, "api_key",
        params=(("series_id", "GDP"), ("file_type", "json")),
    ),
    "EIA_API_KEY": ProviderSpec(
        "EIA", "https://api.eia.gov/v2/", AuthPlacement.QUERY, "api_key",
    ),
    "WINGBITS_API_KEY": ProviderSpec(
        "Wingbits", "https://customer-api.wingbits.com/v1/flights/details/3c6444", AuthPlacement.HEADER, "x-api-key",
        accepted_statuses=frozenset({404}),
    ),
}


@dataclass(frozen=True)
class SecretProbeResult:
    valid: bool
    message: str

    @property
    def status_code(self) -> int:
        return 200 if self.valid else 422

    def to_dict(self) -> Dict[str, object]:
        return {"valid": self.valid, "message": self.message}


def _looks_like_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def is_bot_challenge(response: httpx.Response) -> bool:
    """A 403 HTML interstitial from an edge network, not the provider's API."""
    if response.status_code != 403:
        return False
    if "text/html" not in response.headers.get("content-type", "").lower():
        return False
    if not any(header in response.headers for header in CHALLENGE_HEADERS):
        return False
    return not _looks_like_json(response.text)


def classify(provider: ProviderSpec, response: httpx.Response) -> SecretProbeResult:
    """Turn a provider's answer into a verdict."""
    status = response.status_code
    if 200 <= status < 300 or status in provider.accepted_statuses:
        return SecretProbeResult(True, f"{provider.name} key verified")
    if is_bot_challenge(response):
        return SecretProbeResult(True, f"{provider.name} key stored (Cloudflare blocked verification)")
    if status in REJECTION_STATUSES:
        return SecretProbeResult(False, f"{provider.name} rejected this key")
    if status == 429:
        return SecretProbeResult(True, f"{provider.name} key stored (rate limited during verification)")
    return SecretProbeResult(False, f"{provider.name} verification failed (HTTP {status})")


class SecretProbe:
    """Validates a candidate secret, live where the provider allows it."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.logger = get_logger("sidecar.secret_probe")
        self.metrics = metrics
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True)

    async def validate(self, key: str, value: Optional[str]) -> SecretProbeResult:
        value = (value or "").strip()
        if not value:
            result = SecretProbeResult(False, "Value is required")
        elif key == "OLLAMA_API_URL":
            result = await self._probe_ollama(value)
        elif key == "OLLAMA_MODEL":
            result = SecretProbeResult(True, "Model name stored")
        elif key in RELAY_URL_KEYS:
            result = self._check_relay_url(value)
        elif key in PROVIDERS:
            result = await self._probe_provider(PROVIDERS[key], value)
        else:
            result = SecretProbeResult(True, f"{key} stored")

        self.logger.info("Secret probed", key=key, valid=result.valid, verdict=result.message)
        if self.metrics:
            self.metrics.record_secret_probe(key, result.valid)
        return result

    async def _probe_provider(self, provider: ProviderSpec, value: str) -> SecretProbeResult:
        try:
            response = await self.client.send(provider.build_request(value))
        except httpx.HTTPError as e:
            # The request URL may carry the key, so only the provider is named.
            self.logger.warning("Provider probe failed", provider=provider.name, error_type=type(e).__name__)
            return SecretProbeResult(False, f"Could not reach {provider.name} to verify key")
        return classify(provider, response)

    async def _probe_ollama(self, value: str) -> SecretProbeResult:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL:
            return SecretProbeResult(False, "Must be an http(s) URL")
        if url.scheme not in ("http", "https") or not url.host:
            return SecretProbeResult(False, "Must be an http(s) URL")

        base = value.rstrip("/")
        if base.endswith("/v1"):
            base = base[:-3]

        # Only a missing OpenAI-compatible path sends us to the native API.
        attempts = (
            (f"{base}/v1/models", "Ollama endpoint verified"),
            (f"{base}/api/tags", "Ollama endpoint verified (native API)"),
        )
        for probe_url, message in attempts:
            try:
                response = await self.client.get(probe_url)
            except httpx.HTTPError as e:
                self.logger.debug("Ollama probe failed", url=probe_url, error_type=type(e).__name__)
                return SecretProbeResult(False, "Could not reach Ollama endpoint")
            if response.is_success:
                return SecretProbeResult(True, message)
            if response.status_code != 404:
                break

        return SecretProbeResult(False, f"Ollama endpoint returned HTTP {response.status_code}")

    @staticmethod
    def _check_relay_url(value: str) -> SecretProbeResult:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL:
            return SecretProbeResult(False, "Must be a ws(s) or http(s) URL")
        if url.scheme not in RELAY_SCHEMES or not url.host:
            return SecretProbeResult(False, "Must be a ws(s) or http(s) URL")
        return SecretProbeResult(True, "Relay URL stored")

    async def close(self):
        await self.client.aclose()
