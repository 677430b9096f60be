"""HTTP middleware for the pipeline service.

`RequestIdMiddleware` tags every request with an X-Request-ID (the caller's
own, or a fresh UUID4) and exposes it to the logging layer through a
ContextVar. `SecurityHeadersMiddleware` adds a fixed set of response headers.

Both only touch headers. Response bodies, including streamed calendar output
and file downloads, pass through untouched.
"""

import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")

CallNext = Callable[[Request], Awaitable[Response]]


def get_request_id() -> str:
    """Return the current request's ID, or an empty string outside a request."""
    return _request_id_var.get()


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = _request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach `SECURITY_HEADERS` to every response.

    The timetable route carries credentials in its path, so no referrer is
    ever sent. The HTML timetable view may only be framed by the same origin.
    """

    SECURITY_HEADERS: dict[str, str] = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
        "Referrer-Policy": "no-referrer",
        "X-XSS-Protection": "0",
    }

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        response.headers.update(self.SECURITY_HEADERS)
        return response
