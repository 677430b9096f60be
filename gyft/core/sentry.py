"""Sentry SDK integration.

Captures exceptions and performance traces without leaking secrets.

Key decisions:
  - `send_default_pii=False`: no user data sent by default.
  - `before_send` hook scrubs any event field whose key contains a
    sensitive keyword (password, secret, token, session, answer, dsn).
  - The timetable route carries the portal password, security answer and
    session token as path segments; they are masked in the request URL.
  - No-op when SENTRY_DSN is empty so local and CI runs are unaffected.
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = frozenset({"password", "secret", "token", "session", "answer", "dsn"})

# /pipeline/timetable/{user}/{password}/{secret}/{session}
_CREDENTIAL_PATH_RE = re.compile(r"(/pipeline/timetable/[^/]+)/[^/?#]+/[^/?#]+/[^/?#]+")


def _scrub_secrets(event: dict[str, Any], hint: Any) -> dict[str, Any]:
    """Sentry before_send hook: redact sensitive values and credential URLs."""
    _scrub_dict(event.get("extra", {}))
    request = event.get("request", {})
    request_data = request.get("data", {})
    if isinstance(request_data, dict):
        _scrub_dict(request_data)
    url = request.get("url")
    if isinstance(url, str):
        request["url"] = scrub_credential_path(url)
    return event


def _scrub_dict(d: dict[str, Any]) -> None:
    """Recursively redact sensitive values in-place."""
    for key in list(d.keys()):
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            d[key] = "[REDACTED]"
        elif isinstance(d[key], dict):
            _scrub_dict(d[key])


def scrub_credential_path(url: str) -> str:
    """Mask the credential segments of a timetable pipeline URL."""
    return _CREDENTIAL_PATH_RE.sub(r"\1/[REDACTED]/[REDACTED]/[REDACTED]", url)


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Initialise the Sentry SDK.

    Called from `create_app()`. If `dsn` is empty, this is a no-op.

    Args:
        dsn: Sentry DSN string. Empty string disables Sentry entirely.
        environment: Sentry environment tag ("development" | "production").
    """
    if not dsn or not dsn.strip():
        logger.debug("Sentry DSN not configured, skipping initialisation")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=_scrub_secrets,
    )
    logger.info("Sentry initialised (environment=%s)", environment)
