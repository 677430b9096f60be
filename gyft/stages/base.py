"""Pipeline stages.

A Stage knows which worker script it runs, the positional arguments that
script expects and which artifacts the worker is expected to deposit. The
orchestrator only ever calls `build_request()`, so adding a stage or
swapping a worker implementation does not touch the sequencing logic.

Argument order is part of the worker contract and must not change:
  security_question  (user, cookie_dir)
  timetable          (user, password, answer, session_token, tempstore_dir)
  calendar           (user, tempdir, scriptdir)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from gyft.artifacts.storage import ArtifactKind
from gyft.core.config import Settings
from gyft.stages.types import StageRequest


class Stage(ABC):
    name: ClassVar[str]
    # Settings attribute holding the script file name for this stage.
    script_setting: ClassVar[str]
    produces: ClassVar[tuple[ArtifactKind, ...]] = ()

    @abstractmethod
    def args(self) -> tuple[str, ...]:
        """Positional worker arguments, in contract order."""

    def build_request(self, settings: Settings, workdir: Path) -> StageRequest:
        script = Path(settings.scripts_dir) / getattr(settings, self.script_setting)
        return StageRequest(
            stage=self.name,
            executable=settings.python_executable,
            script=script,
            args=self.args(),
            workdir=workdir,
        )


@dataclass(frozen=True)
class SecurityQuestionStage(Stage):
    """Log in far enough to read the user's security question.

    The worker caches the portal session cookie under `cookie_dir` and
    prints the question text on stdout.
    """

    name: ClassVar[str] = "security_question"
    script_setting: ClassVar[str] = "security_question_script"
    produces: ClassVar[tuple[ArtifactKind, ...]] = (ArtifactKind.SECURITY_QUESTION,)

    user: str
    cookie_dir: Path

    def args(self) -> tuple[str, ...]:
        return (self.user, str(self.cookie_dir))


@dataclass(frozen=True)
class TimetableStage(Stage):
    """Finish the login with the answer and scrape the timetable.

    Its stdout is informational only; the worker writes the timetable
    artifact into `tempstore_dir` itself.
    """

    name: ClassVar[str] = "timetable"
    script_setting: ClassVar[str] = "timetable_script"
    produces: ClassVar[tuple[ArtifactKind, ...]] = (ArtifactKind.TIMETABLE,)

    user: str
    password: str = field(repr=False)
    answer: str = field(repr=False)
    session_token: str = field(repr=False)
    tempstore_dir: Path

    def args(self) -> tuple[str, ...]:
        return (
            self.user,
            self.password,
            self.answer,
            self.session_token,
            str(self.tempstore_dir),
        )


@dataclass(frozen=True)
class CalendarStage(Stage):
    """Turn the scraped timetable into an .ics file and an HTML view."""

    name: ClassVar[str] = "calendar"
    script_setting: ClassVar[str] = "calendar_script"
    produces: ClassVar[tuple[ArtifactKind, ...]] = (
        ArtifactKind.CALENDAR,
        ArtifactKind.TIMETABLE_VIEW,
    )

    user: str
    tempdir: Path
    scriptdir: Path

    def args(self) -> tuple[str, ...]:
        return (self.user, str(self.tempdir), str(self.scriptdir))
