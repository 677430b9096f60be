"""Tests for structlog configuration.

Kept minimal; the processors of our own get direct tests.
"""

import structlog

from gyft.core.logging import _inject_request_id, _redact_credentials, configure_structlog
from gyft.core.middleware import _request_id_var


class TestConfigureStructlog:
    def test_configure_does_not_raise_in_debug_mode(self) -> None:
        configure_structlog(debug=True)

    def test_configure_does_not_raise_in_prod_mode(self) -> None:
        configure_structlog(debug=False)

    def test_logger_usable_after_configure(self) -> None:
        configure_structlog(debug=True)
        logger = structlog.get_logger("test")
        logger.info("stage started", user_id="12345", stage="timetable")

    def test_configure_multiple_times_is_safe(self) -> None:
        configure_structlog(debug=True)
        configure_structlog(debug=False)
        configure_structlog(debug=True)


class TestInjectRequestId:
    def test_adds_request_id_inside_request(self) -> None:
        token = _request_id_var.set("req-1")
        try:
            event = _inject_request_id(None, "info", {"event": "x"})
        finally:
            _request_id_var.reset(token)
        assert event["request_id"] == "req-1"

    def test_omits_request_id_outside_request(self) -> None:
        event = _inject_request_id(None, "info", {"event": "x"})
        assert "request_id" not in event


class TestRedactCredentials:
    def test_masks_portal_credentials(self) -> None:
        event = _redact_credentials(
            None,
            "info",
            {"event": "x", "user_id": "12345", "password": "hunter2", "session_token": "abc"},
        )
        assert event["password"] == "[REDACTED]"
        assert event["session_token"] == "[REDACTED]"
        assert event["user_id"] == "12345"

    def test_leaves_other_events_alone(self) -> None:
        event = {"event": "stage started", "stage": "timetable"}
        assert _redact_credentials(None, "info", dict(event)) == event
