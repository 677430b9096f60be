"""Pipeline endpoints.

GET /pipeline/security-question/{user}
    Runs the security-question worker and returns the question as text.

GET /pipeline/timetable/{user}/{password}/{secret}/{session}
    Scrapes the timetable, then streams the calendar worker's output as
    newline-terminated text lines.

Failure reporting on the streaming route:
  - A failure before the first calendar line (including every timetable
    stage failure) is returned as a JSON error with the stage error's
    status code.
  - A calendar failure after output has started ends the stream with a
    final ``ERROR: <stage>: <reason>`` line.

Rate limiting: both routes are throttled per user via SlowAPI, at the
`pipeline_rate_limit` of the settings the app was created with.
"""

import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from gyft.core.dependencies import get_orchestrator
from gyft.core.errors import StageFailure
from gyft.core.limiter import limiter, pipeline_limit
from gyft.pipeline.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.get("/security-question/{user}", response_class=PlainTextResponse)
@limiter.limit(pipeline_limit)
async def get_security_question(
    request: Request,
    user: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PlainTextResponse:
    """Return the portal security question for a roll number."""
    logger.info("Security question requested for %s", user)
    question = await orchestrator.fetch_security_question(user)
    return PlainTextResponse(question)


@router.get("/timetable/{user}/{password}/{secret}/{session}")
@limiter.limit(pipeline_limit)
async def make_timetable(
    request: Request,
    user: str,
    password: str,
    secret: str,
    session: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Scrape the timetable and stream calendar generation progress."""
    logger.info("Timetable requested for %s", user)
    lines = orchestrator.generate_calendar(user, password, secret, session)

    # Drive the run up to its first calendar line so that early failures
    # still get a proper status code.
    try:
        first: Optional[str] = await anext(lines)
    except StopAsyncIteration:
        first = None

    return StreamingResponse(_stream_lines(first, lines), media_type="text/plain")


async def _stream_lines(first: Optional[str], lines: AsyncIterator[str]) -> AsyncIterator[str]:
    async with aclosing(lines):
        try:
            if first is not None:
                yield first + "\n"
            async for line in lines:
                yield line + "\n"
        except StageFailure as exc:
            reason = " | ".join(exc.reason.splitlines()) or "no diagnostic output"
            yield f"ERROR: {exc.stage}: {reason}\n"
