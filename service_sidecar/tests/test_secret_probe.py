"""
Unit tests for live secret probes.
"""

import json

import httpx
import pytest

from service_sidecar.app.credentials import ALLOWED_ENV_KEYS, SecretProbe, is_allowed_key
from service_sidecar.app.credentials.probe import PROVIDERS, classify, is_bot_challenge

CHALLENGE_HTML = "<!DOCTYPE html><html><head><title>Just a moment...</title></head><body>challenge</body></html>"


def probe_with(handler) -> SecretProbe:
    return SecretProbe(timeout=1.0, transport=httpx.MockTransport(handler))


class TestAllowlist:
    """Test cases for the environment key allowlist."""

    def test_known_keys(self):
        for key in ("GROQ_API_KEY", "OLLAMA_API_URL", "OLLAMA_MODEL", "WS_RELAY_URL", "AISSTREAM_API_KEY"):
            assert is_allowed_key(key)

    def test_unknown_keys(self):
        assert not is_allowed_key("PATH")
        assert not is_allowed_key("LOCAL_API_TOKEN")
        assert "LOCAL_API_TOKEN" not in ALLOWED_ENV_KEYS


class TestClassify:
    """Test cases for provider response classification."""

    groq = PROVIDERS["GROQ_API_KEY"]

    def test_success(self):
        result = classify(self.groq, httpx.Response(200, json={"data": []}))
        assert result.valid is True
        assert result.message == "Groq key verified"
        assert result.status_code == 200

    def test_html_challenge_soft_passes(self):
        """A 403 HTML interstitial with a challenge header stores the key unverified."""
        response = httpx.Response(
            403,
            headers={"content-type": "text/html; charset=utf-8", "cf-ray": "abc123"},
            text=CHALLENGE_HTML,
        )
        assert is_bot_challenge(response) is True

        result = classify(self.groq, response)
        assert result.valid is True
        assert result.message == "Groq key stored (Cloudflare blocked verification)"

    def test_json_403_with_cf_ray_is_rejection(self):
        """A JSON auth error is a rejection even behind the edge network."""
        response = httpx.Response(
            403,
            headers={"content-type": "application/json", "cf-ray": "abc123"},
            text=json.dumps({"error": {"message": "Invalid API Key"}}),
        )
        assert is_bot_challenge(response) is False

        result = classify(self.groq, response)
        assert result.valid is False
        assert result.message == "Groq rejected this key"
        assert result.status_code == 422

    def test_html_403_without_marker_is_rejection(self):
        """HTML alone is not enough to soft-pass."""
        response = httpx.Response(403, headers={"content-type": "text/html"}, text=CHALLENGE_HTML)
        assert classify(self.groq, response).valid is False

    @pytest.mark.parametrize("status", [400, 401])
    def test_auth_statuses_reject(self, status):
        assert classify(self.groq, httpx.Response(status, json={})).message == "Groq rejected this key"

    def test_rate_limited_soft_passes(self):
        result = classify(self.groq, httpx.Response(429, json={}))
        assert result.valid is True
        assert "rate limited" in result.message

    def test_server_error_fails(self):
        result = classify(self.groq, httpx.Response(503, text="unavailable"))
        assert result.valid is False
        assert result.message == "Groq verification failed (HTTP 503)"

    def test_provider_specific_accepted_status(self):
        """Wingbits answers 404 for an unknown aircraft once the key is accepted."""
        result = classify(PROVIDERS["WINGBITS_API_KEY"], httpx.Response(404, json={}))
        assert result.valid is True
        assert result.message == "Wingbits key verified"


class TestSecretProbe:
    """Test cases for SecretProbe."""

    @pytest.mark.asyncio
    async def test_groq_probe_sends_bearer(self):
        """Hosted keys are presented the way the provider expects."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        result = await probe_with(handler).validate("GROQ_API_KEY", " gsk_test ")

        assert result.valid is True
        assert str(seen[0].url) == "https://api.groq.com/openai/v1/models"
        assert seen[0].headers["authorization"] == "Bearer gsk_test"

    @pytest.mark.asyncio
    async def test_query_placement(self):
        """FRED takes its key as a query parameter."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        await probe_with(handler).validate("FRED_API_KEY", "fredkey")

        assert seen[0].url.host == "api.stlouisfed.org"
        assert seen[0].url.params["api_key"] == "fredkey"
        assert "authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_header_placement(self):
        """Wingbits takes its key in x-api-key."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        await probe_with(handler).validate("WINGBITS_API_KEY", "wb-key")

        assert seen[0].headers["x-api-key"] == "wb-key"

    @pytest.mark.asyncio
    async def test_groq_challenge_end_to_end(self):
        """An edge challenge page soft-passes through the full probe."""
        def handler(request):
            return httpx.Response(
                403,
                headers={"content-type": "text/html", "cf-ray": "abc123"},
                text=CHALLENGE_HTML,
            )

        result = await probe_with(handler).validate("GROQ_API_KEY", "dummy-key")

        assert result.to_dict() == {
            "valid": True,
            "message": "Groq key stored (Cloudflare blocked verification)",
        }

    @pytest.mark.asyncio
    async def test_unreachable_provider(self):
        """Transport failures are reported without the key."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await probe_with(handler).validate("OPENROUTER_API_KEY", "sk-or-secret")

        assert result.valid is False
        assert result.message == "Could not reach OpenRouter to verify key"
        assert "sk-or-secret" not in result.message

    @pytest.mark.asyncio
    async def test_ollama_openai_compatible(self):
        """An Ollama base with /v1/models is verified."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/v1/models":
                return httpx.Response(200, json={"data": []})
            return httpx.Response(404)

        result = await probe_with(handler).validate("OLLAMA_API_URL", "http://127.0.0.1:11434")

        assert result.valid is True
        assert result.message == "Ollama endpoint verified"
        assert seen == ["/v1/models"]

    @pytest.mark.asyncio
    async def test_ollama_v1_base_not_doubled(self):
        """A base URL already ending in /v1 is not probed at /v1/v1."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/v1/models":
                return httpx.Response(200, json={"data": []})
            return httpx.Response(404)

        result = await probe_with(handler).validate("OLLAMA_API_URL", "http://127.0.0.1:1234/v1")

        assert result.message == "Ollama endpoint verified"
        assert seen == ["/v1/models"]

    @pytest.mark.asyncio
    async def test_ollama_native_fallback(self):
        """Native /api/tags is tried when /v1/models is missing."""
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": []})
            return httpx.Response(404)

        result = await probe_with(handler).validate("OLLAMA_API_URL", "http://127.0.0.1:11434")

        assert result.valid is True
        assert result.message == "Ollama endpoint verified (native API)"

    @pytest.mark.asyncio
    async def test_ollama_non_404_reported_directly(self):
        """Only a 404 on /v1/models moves on to the native API."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": []})
            return httpx.Response(401)

        result = await probe_with(handler).validate("OLLAMA_API_URL", "http://127.0.0.1:11434")

        assert result.valid is False
        assert result.message == "Ollama endpoint returned HTTP 401"
        assert seen == ["/v1/models"]

    @pytest.mark.asyncio
    async def test_ollama_transport_error_not_retried(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": []})
            raise httpx.ConnectError("refused", request=request)

        result = await probe_with(handler).validate("OLLAMA_API_URL", "http://127.0.0.1:11434")

        assert result.message == "Could not reach Ollama endpoint"
        assert seen == ["/v1/models"]

    @pytest.mark.asyncio
    async def test_ollama_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await probe_with(handler).validate("OLLAMA_API_URL", "http://127.0.0.1:11434")

        assert result.valid is False
        assert result.message == "Could not reach Ollama endpoint"

    @pytest.mark.asyncio
    async def test_ollama_rejects_non_http(self):
        """Non-http schemes are rejected without a network call."""
        def handler(request):
            raise AssertionError("no request expected")

        result = await probe_with(handler).validate("OLLAMA_API_URL", "ftp://127.0.0.1:11434")

        assert result.to_dict() == {"valid": False, "message": "Must be an http(s) URL"}
        assert result.status_code == 422

    @pytest.mark.asyncio
    async def test_ollama_model(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await probe_with(handler).validate("OLLAMA_MODEL", "mistral:7b")

        assert result.valid is True
        assert result.message == "Model name stored"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value,valid", [
        ("wss://relay.example.com/ws", True),
        ("https://relay.example.com", True),
        ("ftp://relay.example.com", False),
        ("not a url", False),
    ])
    async def test_relay_urls(self, value, valid):
        def handler(request):
            raise AssertionError("no request expected")

        result = await probe_with(handler).validate("WS_RELAY_URL", value)

        assert result.valid is valid

    @pytest.mark.asyncio
    async def test_format_only_keys(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await probe_with(handler).validate("AISSTREAM_API_KEY", "abc")

        assert result.valid is True
        assert result.message == "AISSTREAM_API_KEY stored"

    @pytest.mark.asyncio
    async def test_empty_value(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await probe_with(handler).validate("GROQ_API_KEY", "   ")

        assert result.valid is False
        assert result.message == "Value is required"
