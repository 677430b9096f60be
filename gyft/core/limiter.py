"""SlowAPI rate limiter singleton.

Pipeline routes spawn worker processes that log into the university portal,
so they are limited per user identifier rather than per client IP.

Usage in route handlers:
    @router.get("/pipeline/security-question/{user}")
    @limiter.limit(pipeline_limit)
    async def handler(request: Request, user: str, ...):
        ...

The `Request` parameter is required by SlowAPI even if the handler doesn't
use it directly; it uses it to extract the key.

`pipeline_limit` is a callable, which SlowAPI evaluates on every request, so
the limit set by `configure_limits()` in `create_app()` takes effect without
re-importing the routers. The limiter is process-wide; the most recently
created app decides the limit.
"""

from slowapi import Limiter

from gyft.core.config import Settings

_pipeline_limit = Settings.model_fields["pipeline_rate_limit"].default


def _user_key(request) -> str:
    """Key function: rate-limit per user path parameter, else per client IP."""
    user = request.path_params.get("user")
    if user:
        return f"user:{user}"
    return request.client.host if request.client else "unknown"


def configure_limits(settings: Settings) -> None:
    global _pipeline_limit
    _pipeline_limit = settings.pipeline_rate_limit


def pipeline_limit() -> str:
    return _pipeline_limit


limiter = Limiter(key_func=_user_key, default_limits=[])
