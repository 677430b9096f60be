"""Error taxonomy for the timetable pipeline.

Every failure the pipeline can surface is a `PipelineError` subclass that
carries the HTTP status it maps to and a stable machine-readable code. The
exception handler registered in `create_app()` renders them as::

    {"detail": "...", "code": "worker_exit_failure", "stage": "timetable"}

Stage errors keep the originating `StageResult` so callers can inspect the
exit code and captured output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from gyft.stages.types import StageResult


class PipelineError(Exception):
    """Base class for all errors surfaced to HTTP callers."""

    status_code: int = 500
    code: str = "pipeline_error"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        self.stage = stage
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "stage": self.stage}


class InvalidIdentifier(PipelineError):
    """The user identifier is not safe to use as a path component."""

    status_code = 400
    code = "invalid_identifier"

    def __init__(self, user_id: str, reason: str):
        self.user_id = user_id
        super().__init__(f"Invalid user identifier {user_id!r}: {reason}")


class ArtifactNotFound(PipelineError):
    """No stored file exists for the requested (user, kind) key."""

    status_code = 404
    code = "artifact_not_found"

    def __init__(self, user_id: str, kind: str):
        self.user_id = user_id
        self.kind = kind
        super().__init__(f"No {kind} artifact stored for user {user_id!r}")


class StageFailure(PipelineError):
    """A worker invocation did not succeed. Carries the StageResult."""

    def __init__(self, result: "StageResult", message: str = ""):
        self.result = result
        super().__init__(
            message or f"Stage '{result.stage}' failed: {result.reason or 'no diagnostic output'}",
            stage=result.stage,
        )

    @property
    def reason(self) -> str:
        return self.result.reason


class WorkerSpawnFailure(StageFailure):
    """The worker executable is missing or could not be started."""

    status_code = 500
    code = "worker_spawn_failure"


class WorkerExitFailure(StageFailure):
    """The worker exited non-zero or was terminated by a signal."""

    status_code = 502
    code = "worker_exit_failure"


class WorkerTimeout(StageFailure):
    """The worker exceeded its wall-clock budget and was killed."""

    status_code = 504
    code = "worker_timeout"
