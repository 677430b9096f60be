"""Pydantic schemas for artifact endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ArtifactInfoResponse(BaseModel):
    """One artifact kind for a user.

    `stale` is set when the file is older than the configured retention
    window. The pipeline never deletes artifacts, so operators rely on this
    flag to spot files that housekeeping should clear.
    """

    kind: str
    exists: bool
    size_bytes: Optional[int] = None
    modified_at: Optional[datetime] = None
    stale: bool = False


class ArtifactListResponse(BaseModel):
    user: str
    artifacts: list[ArtifactInfoResponse]
    busy: bool = False
