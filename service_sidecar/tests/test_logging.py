"""
Unit tests for the shared logging processors.
"""

from shared.logging import (
    REDACTED,
    add_correlation_context,
    clear_context,
    redact_secrets,
    service_context,
    set_request_id,
    set_route,
)


class TestLoggingProcessors:
    """Test cases for structlog processors."""

    def test_redacts_credential_fields(self):
        event = redact_secrets(None, "info", {
            "event": "Environment updated",
            "key": "GROQ_API_KEY",
            "value": "gsk_live",
            "Authorization": "Bearer abc",
        })

        assert event["value"] == REDACTED
        assert event["Authorization"] == REDACTED
        assert event["key"] == "GROQ_API_KEY"

    def test_correlation_context(self):
        set_request_id("req-1")
        set_route("/api/news")
        try:
            event = add_correlation_context(None, "info", {"event": "x"})
        finally:
            clear_context()

        assert event["request_id"] == "req-1"
        assert event["route"] == "/api/news"
        assert add_correlation_context(None, "info", {"event": "y"}) == {"event": "y"}

    def test_service_context(self):
        processor = service_context("sidecar")

        assert processor(None, "info", {"event": "x"})["service"] == "sidecar"
