from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from gyft.artifacts.router import router as artifacts_router
from gyft.artifacts.storage import ArtifactStore
from gyft.core.config import Settings, get_settings
from gyft.core.errors import PipelineError
from gyft.core.limiter import configure_limits, limiter
from gyft.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from gyft.pipeline.guard import UserRunGuard
from gyft.pipeline.orchestrator import PipelineOrchestrator
from gyft.pipeline.router import router as pipeline_router


async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    _app = FastAPI(
        title="GYFT Pipeline",
        description="Turns portal credentials into a personal timetable calendar",
        version="0.1.0",
    )

    # ---------------------------------------------------------------------------
    # Pipeline singletons: one store, one per-user run guard per process
    # ---------------------------------------------------------------------------
    store = ArtifactStore.from_settings(settings)
    _app.state.settings = settings
    _app.state.store = store
    _app.state.orchestrator = PipelineOrchestrator(settings, store, UserRunGuard())

    # ---------------------------------------------------------------------------
    # Error handling: domain errors carry their own status codes
    # ---------------------------------------------------------------------------
    configure_limits(settings)
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    _app.add_exception_handler(PipelineError, _pipeline_error_handler)

    # ---------------------------------------------------------------------------
    # Middleware (registered outermost → innermost; executed innermost → outermost)
    # ---------------------------------------------------------------------------
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _app.add_middleware(SlowAPIMiddleware)
    _app.add_middleware(SecurityHeadersMiddleware)
    _app.add_middleware(RequestIdMiddleware)

    # ---------------------------------------------------------------------------
    # Sentry: initialised here so it captures startup errors too
    # ---------------------------------------------------------------------------
    from gyft.core.sentry import init_sentry

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )

    # ---------------------------------------------------------------------------
    # Logging: configure structlog before any routers log anything
    # ---------------------------------------------------------------------------
    from gyft.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    _app.include_router(pipeline_router)
    _app.include_router(artifacts_router)

    return _app


app = create_app()
