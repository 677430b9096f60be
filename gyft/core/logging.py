"""Structured logging via structlog.

`configure_structlog()` runs once from `create_app()`. Run events are logged
through `structlog.get_logger()` with keyword fields (user_id, run_id,
stage); plain module loggers go through the stdlib bridge onto the same
stream.

Every event passes through two processors of our own:
  - `_inject_request_id` copies the X-Request-ID of the request being served,
    so a failed run can be found from the response header alone.
  - `_redact_credentials` replaces portal credentials (password, security
    answer, session token) if a caller ever passes them as fields.

debug=True renders coloured console output, otherwise one JSON object per
line.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from gyft.core.middleware import get_request_id

_CREDENTIAL_FIELDS = frozenset({"password", "answer", "secret", "session_token"})


def _inject_request_id(logger: Any, method: str, event_dict: dict) -> dict:
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def _redact_credentials(logger: Any, method: str, event_dict: dict) -> dict:
    for key in _CREDENTIAL_FIELDS.intersection(event_dict):
        event_dict[key] = "[REDACTED]"
    return event_dict


def _renderer(debug: bool) -> Any:
    if debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog and the stdlib root logger. Safe to call repeatedly."""
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _inject_request_id,
            _redact_credentials,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(debug),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stdout, level=level)
