"""Timetable pipeline orchestration.

A run is an explicit state machine over one PipelineSession:

    awaiting_security_question ──► done
    awaiting_timetable ──► awaiting_calendar_file ──► done
            │                        │
            └────────► aborted ◄─────┘

The security-question run answers one request and ends. The timetable run
scrapes the timetable (whole-output mode, stdout is only a progress signal)
and then streams the calendar stage's output to the caller line by line.

The first failing stage aborts the run and its StageFailure propagates; no
later stage is started. Artifacts written by earlier stages are left in place
and are overwritten by the next successful run.

Every run holds the user's lock in `UserRunGuard` for its whole lifetime,
including the time spent streaming calendar output. Workers run in a
run-scoped scratch directory that is removed when the run ends.
"""

import asyncio
import uuid
from contextlib import aclosing, contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Iterator, Optional

import structlog

from gyft.artifacts.storage import ArtifactKind, ArtifactStore
from gyft.core.config import Settings
from gyft.pipeline.guard import UserRunGuard
from gyft.stages.base import CalendarStage, SecurityQuestionStage, Stage, TimetableStage
from gyft.stages.executor import StageExecution
from gyft.stages.types import StageRequest, StageResult

logger = structlog.get_logger(__name__)


class PipelineState(str, Enum):
    AWAITING_SECURITY_QUESTION = "awaiting_security_question"
    AWAITING_TIMETABLE = "awaiting_timetable"
    AWAITING_CALENDAR_FILE = "awaiting_calendar_file"
    DONE = "done"
    ABORTED = "aborted"


_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.AWAITING_SECURITY_QUESTION: frozenset(
        {PipelineState.DONE, PipelineState.ABORTED}
    ),
    PipelineState.AWAITING_TIMETABLE: frozenset(
        {PipelineState.AWAITING_CALENDAR_FILE, PipelineState.ABORTED}
    ),
    PipelineState.AWAITING_CALENDAR_FILE: frozenset(
        {PipelineState.DONE, PipelineState.ABORTED}
    ),
    PipelineState.DONE: frozenset(),
    PipelineState.ABORTED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PipelineSession:
    """Request-scoped state of one run. Never persisted or shared."""

    user_id: str
    state: PipelineState
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    results: list[StageResult] = field(default_factory=list)
    abort_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, state: PipelineState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {state.value}")
        self.state = state

    def abort(self, reason: str) -> None:
        self.advance(PipelineState.ABORTED)
        self.abort_reason = reason


ExecutionFactory = Callable[[StageRequest, float], StageExecution]


class PipelineOrchestrator:
    def __init__(
        self,
        settings: Settings,
        store: ArtifactStore,
        guard: Optional[UserRunGuard] = None,
        execution_factory: ExecutionFactory = StageExecution,
    ):
        self.settings = settings
        self.store = store
        self.guard = guard or UserRunGuard()
        self._execution_factory = execution_factory

    async def fetch_security_question(
        self,
        user_id: str,
        session: Optional[PipelineSession] = None,
    ) -> str:
        """Run the security-question stage and return the question text."""
        self.store.validate(user_id)
        session = session or PipelineSession(user_id, PipelineState.AWAITING_SECURITY_QUESTION)

        async with self.guard.hold(user_id, session.run_id):
            stage = SecurityQuestionStage(
                user=user_id,
                cookie_dir=self.store.kind_dir(ArtifactKind.SECURITY_QUESTION),
            )
            with self._scratch(session), _abort_on_cancel(session):
                result = await self._run(session, stage)

        session.advance(PipelineState.DONE)
        logger.info("run complete", user_id=user_id, run_id=session.run_id, kind="security_question")
        return result.output

    async def generate_calendar(
        self,
        user_id: str,
        password: str,
        answer: str,
        session_token: str,
        session: Optional[PipelineSession] = None,
    ) -> AsyncIterator[str]:
        """Scrape the timetable, then stream the calendar stage's output.

        Raises the first StageFailure; the calendar stage never starts unless
        the timetable stage succeeded in this run.
        """
        self.store.validate(user_id)
        session = session or PipelineSession(user_id, PipelineState.AWAITING_TIMETABLE)

        async with self.guard.hold(user_id, session.run_id):
            with self._scratch(session), _abort_on_cancel(session):
                await self._run(
                    session,
                    TimetableStage(
                        user=user_id,
                        password=password,
                        answer=answer,
                        session_token=session_token,
                        tempstore_dir=self.store.root,
                    ),
                )
                session.advance(PipelineState.AWAITING_CALENDAR_FILE)

                stage = CalendarStage(
                    user=user_id,
                    tempdir=self.store.root,
                    scriptdir=Path(self.settings.scripts_dir),
                )
                execution = self._start(session, stage)
                async with aclosing(execution.lines()) as lines:
                    async for line in lines:
                        yield line
                self._complete(session, stage, execution.result)

        session.advance(PipelineState.DONE)
        logger.info("run complete", user_id=user_id, run_id=session.run_id, kind="calendar")

    @contextmanager
    def _scratch(self, session: PipelineSession) -> Iterator[None]:
        """Discard the run's scratch directory when the run ends, however it ends."""
        try:
            yield
        finally:
            self.store.discard_scratch(session.user_id, session.run_id)

    def _start(self, session: PipelineSession, stage: Stage) -> StageExecution:
        self.store.ensure_layout()
        workdir = self.store.scratch_dir(session.user_id, session.run_id)
        request = stage.build_request(self.settings, workdir)
        logger.info(
            "stage started",
            user_id=session.user_id,
            run_id=session.run_id,
            stage=stage.name,
            state=session.state.value,
        )
        return self._execution_factory(request, self.settings.stage_timeout_seconds)

    async def _run(self, session: PipelineSession, stage: Stage) -> StageResult:
        execution = self._start(session, stage)
        async with aclosing(execution.lines()) as lines:
            async for _ in lines:
                pass
        return self._complete(session, stage, execution.result)

    def _complete(self, session: PipelineSession, stage: Stage, result: StageResult) -> StageResult:
        session.results.append(result)
        if not result.is_success:
            session.abort(result.reason)
            logger.error(
                "stage failed",
                user_id=session.user_id,
                run_id=session.run_id,
                stage=stage.name,
                status=result.status.value,
                exit_code=result.exit_code,
                reason=result.reason,
            )
            result.raise_for_status()

        missing = [
            kind.value for kind in stage.produces
            if not self.store.exists(session.user_id, kind)
        ]
        if missing:
            logger.warning(
                "stage succeeded without expected artifacts",
                user_id=session.user_id,
                run_id=session.run_id,
                stage=stage.name,
                missing=missing,
            )
        return result


@contextmanager
def _abort_on_cancel(session: PipelineSession) -> Iterator[None]:
    """Mark the session aborted when the caller goes away mid-run."""
    try:
        yield
    except (GeneratorExit, asyncio.CancelledError):
        if not session.is_terminal:
            logger.warning(
                "run cancelled",
                user_id=session.user_id,
                run_id=session.run_id,
                state=session.state.value,
            )
            session.abort("cancelled by caller")
        raise
