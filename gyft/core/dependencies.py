"""FastAPI dependencies resolving the per-app pipeline singletons.

`create_app()` builds one ArtifactStore, one UserRunGuard and one
PipelineOrchestrator and stores them on `app.state`; routes receive them
through these functions so tests can override them.
"""

from fastapi import Request

from gyft.artifacts.storage import ArtifactStore
from gyft.pipeline.orchestrator import PipelineOrchestrator


def get_store(request: Request) -> ArtifactStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator
