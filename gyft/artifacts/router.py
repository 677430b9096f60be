"""Artifact download endpoints.

Serves generated calendar files and timetable views as attachments. The
content type comes from a fixed extension table, never from sniffing the
file, and the suggested filename is always ``{user}{ext}``.

Files are streamed in chunks straight from the store; a client that
disconnects mid-download simply ends the stream.
"""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Iterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from gyft.artifacts.schemas import ArtifactInfoResponse, ArtifactListResponse
from gyft.artifacts.storage import ArtifactKind, ArtifactStore
from gyft.core.dependencies import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["artifacts"])

CONTENT_TYPES: dict[str, str] = {
    ".ics": "text/calendar",
    ".html": "text/html",
    ".json": "application/json",
    ".cookie": "text/plain",
    ".txt": "text/plain",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_CHUNK_SIZE = 64 * 1024


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)


def serve_artifact(store: ArtifactStore, user_id: str, kind: ArtifactKind) -> StreamingResponse:
    """Stream a stored artifact as a download.

    Raises:
        InvalidIdentifier: `user_id` is not path-safe.
        ArtifactNotFound: nothing stored for ``(user_id, kind)``.
    """
    fh = store.open_for_read(user_id, kind)
    path = Path(fh.name)
    size = os.fstat(fh.fileno()).st_size

    headers = {
        "Content-Disposition": f'attachment; filename="{user_id}{path.suffix}"',
        "Content-Length": str(size),
    }
    logger.info("Begin download of %s for %s (%d bytes)", kind.value, user_id, size)
    return StreamingResponse(
        _iter_file(fh, user_id, kind),
        media_type=content_type_for(path),
        headers=headers,
    )


def _iter_file(fh: BinaryIO, user_id: str, kind: ArtifactKind) -> Iterator[bytes]:
    try:
        while chunk := fh.read(_CHUNK_SIZE):
            yield chunk
        logger.info("Download of %s for %s complete", kind.value, user_id)
    finally:
        fh.close()


@router.get("/calendar/{user}")
async def download_calendar(
    user: str,
    store: ArtifactStore = Depends(get_store),
) -> StreamingResponse:
    """Download the generated .ics calendar file."""
    return serve_artifact(store, user, ArtifactKind.CALENDAR)


@router.get("/timetable-view/{user}")
async def download_timetable_view(
    user: str,
    store: ArtifactStore = Depends(get_store),
) -> StreamingResponse:
    """Download the rendered HTML timetable."""
    return serve_artifact(store, user, ArtifactKind.TIMETABLE_VIEW)


@router.get("/artifacts/{user}", response_model=ArtifactListResponse)
async def list_artifacts(
    request: Request,
    user: str,
    store: ArtifactStore = Depends(get_store),
) -> ArtifactListResponse:
    """Report which artifacts exist for a user and whether they are stale."""
    infos = store.list_artifacts(user)
    guard = request.app.state.orchestrator.guard
    return ArtifactListResponse(
        user=user,
        artifacts=[
            ArtifactInfoResponse(
                kind=info.kind.value,
                exists=info.exists,
                size_bytes=info.size_bytes,
                modified_at=info.modified_at,
                stale=info.stale,
            )
            for info in infos
        ],
        busy=guard.is_busy(user),
    )
