"""Types describing one worker invocation and its outcome."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from gyft.core.errors import (
    StageFailure,
    WorkerExitFailure,
    WorkerSpawnFailure,
    WorkerTimeout,
)


class StageStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


@dataclass(frozen=True)
class StageRequest:
    """Everything needed to launch one worker process.

    `executable` and `script` select the worker; `args` are passed
    positionally after the script path, in order. `workdir` becomes the
    process's cwd.
    """

    stage: str
    executable: str
    script: Path
    args: tuple[str, ...]
    workdir: Path

    @property
    def argv(self) -> list[str]:
        return [self.executable, str(self.script), *self.args]


@dataclass(frozen=True)
class StageResult:
    """Terminal outcome of one worker invocation.

    Produced exactly once per StageExecution. A stage is successful only if
    the process started and exited with code 0 inside its time budget.
    """

    stage: str
    status: StageStatus
    lines: tuple[str, ...] = ()
    exit_code: Optional[int] = None
    reason: str = ""
    duration_seconds: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status is StageStatus.SUCCESS

    @property
    def output(self) -> str:
        return "\n".join(self.lines)

    def raise_for_status(self) -> "StageResult":
        """Raise the matching StageFailure unless the stage succeeded."""
        if self.is_success:
            return self
        raise _FAILURES[self.status](self)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "line_count": len(self.lines),
            "duration_seconds": round(self.duration_seconds, 3),
        }


_FAILURES: dict[StageStatus, type[StageFailure]] = {
    StageStatus.FAILED: WorkerExitFailure,
    StageStatus.TIMED_OUT: WorkerTimeout,
    StageStatus.SPAWN_FAILED: WorkerSpawnFailure,
}
