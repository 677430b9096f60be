"""Worker process supervision.

Each stage runs as one external process launched with a fixed argument
vector (no shell). stdout is read line by line and handed to the caller as
it arrives; stderr is drained concurrently and attached to the result as the
diagnostic reason when the worker fails.

Workers start in their own session, so a scraper and everything it spawns
(browsers, drivers) form one process group that is killed as a unit.

Guarantees:
  - exactly one StageResult per StageExecution, set when `lines()` ends
  - the wall-clock timeout kills the worker's process group and yields
    `timed_out`, even when grandchildren hold the output pipes open
  - if the consumer stops iterating (disconnect, cancellation) the process
    group is killed instead of being left running
  - processes a worker leaves behind after exiting are killed too
"""

import asyncio
import logging
import os
import signal
import sys
import time
from typing import AsyncIterator, Optional

from gyft.stages.limits import apply_resource_limits
from gyft.stages.types import StageRequest, StageResult, StageStatus

logger = logging.getLogger(__name__)

# Default wall-clock budget per worker (seconds)
DEFAULT_TIMEOUT = 120.0

# How long to wait for a killed worker to be reaped.
_REAP_TIMEOUT = 5.0

# Scrapers occasionally print whole HTML tables on one line.
_STREAM_LIMIT_BYTES = 1024 * 1024


class StageExecution:
    """One supervised worker invocation.

    Usage:
        execution = StageExecution(request, timeout_seconds=60)
        async for line in execution.lines():
            ...
        execution.result.raise_for_status()
    """

    def __init__(self, request: StageRequest, timeout_seconds: float = DEFAULT_TIMEOUT):
        self.request = request
        self.timeout_seconds = timeout_seconds
        self.result: Optional[StageResult] = None
        self._started = False

    async def lines(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError(f"Stage '{self.request.stage}' was already executed")
        self._started = True

        request = self.request
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        deadline = loop.time() + self.timeout_seconds
        collected: list[str] = []

        logger.info(
            "Running stage '%s': %s (cwd=%s, %d args)",
            request.stage, request.script.name, request.workdir, len(request.args),
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *request.argv,
                cwd=str(request.workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT_BYTES,
                start_new_session=True,
                preexec_fn=apply_resource_limits,
            )
        except OSError as exc:
            self._finish(StageStatus.SPAWN_FAILED, collected, None, str(exc), start)
            return

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        completed = False
        try:
            while True:
                raw = await asyncio.wait_for(proc.stdout.readline(), _remaining(loop, deadline))
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                collected.append(line)
                yield line

            exit_code = await asyncio.wait_for(proc.wait(), _remaining(loop, deadline))
            stderr = await asyncio.wait_for(stderr_task, _remaining(loop, deadline))
            completed = True

        except asyncio.TimeoutError:
            completed = True
            await _terminate(proc, stderr_task)
            self._finish(
                StageStatus.TIMED_OUT,
                collected,
                proc.returncode,
                f"Timed out after {self.timeout_seconds:g} seconds",
                start,
            )
            return

        except ValueError as exc:
            # StreamReader raises ValueError when a line exceeds the buffer limit.
            completed = True
            await _terminate(proc, stderr_task)
            self._finish(StageStatus.FAILED, collected, proc.returncode, str(exc), start)
            return

        finally:
            if not completed:
                # Consumer went away before the worker finished.
                await _terminate(proc, stderr_task)
                logger.warning(
                    "Stage '%s' abandoned by caller; worker pid %s killed",
                    request.stage, proc.pid,
                )

        # The worker is gone; anything still running in its group is a leftover.
        _kill(proc)

        if exit_code == 0:
            self._finish(StageStatus.SUCCESS, collected, exit_code, "", start)
        else:
            reason = _truncate_output(stderr.decode("utf-8", errors="replace"))
            if not reason:
                reason = (
                    f"terminated by signal {-exit_code}"
                    if exit_code < 0
                    else f"exited with code {exit_code}"
                )
            self._finish(StageStatus.FAILED, collected, exit_code, reason, start)

    def _finish(
        self,
        status: StageStatus,
        lines: list[str],
        exit_code: Optional[int],
        reason: str,
        start: float,
    ) -> None:
        self.result = StageResult(
            stage=self.request.stage,
            status=status,
            lines=tuple(lines),
            exit_code=exit_code,
            reason=reason,
            duration_seconds=time.monotonic() - start,
        )
        if self.result.is_success:
            logger.info(
                "Stage '%s' OK (exit=0, %d lines, %.1fs)",
                self.request.stage, len(lines), self.result.duration_seconds,
            )
        else:
            logger.warning(
                "Stage '%s' %s (exit=%s, %.1fs): %s",
                self.request.stage,
                status.value.upper(),
                exit_code,
                self.result.duration_seconds,
                reason,
            )


async def run_stage(request: StageRequest, timeout_seconds: float = DEFAULT_TIMEOUT) -> StageResult:
    """Run a stage in whole-output mode and return its terminal result.

    Raises no exceptions for worker failures; inspect the result or call
    `raise_for_status()`.
    """
    execution = StageExecution(request, timeout_seconds)
    async for _ in execution.lines():
        pass
    return execution.result


def _remaining(loop: asyncio.AbstractEventLoop, deadline: float) -> float:
    remaining = deadline - loop.time()
    if remaining <= 0:
        raise asyncio.TimeoutError
    return remaining


def _kill(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the worker's whole process group."""
    try:
        if sys.platform == "win32":
            if proc.returncode is None:
                proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


async def _terminate(proc: asyncio.subprocess.Process, stderr_task: asyncio.Future) -> None:
    _kill(proc)
    stderr_task.cancel()
    try:
        await asyncio.wait_for(proc.wait(), _REAP_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("Worker pid %s not reaped %gs after SIGKILL", proc.pid, _REAP_TIMEOUT)


def _truncate_output(text: str, max_lines: int = 40, max_chars: int = 4000) -> str:
    """Return a concise tail of worker output for error reasons."""
    if not text:
        return ""
    lines = text.strip().splitlines()
    joined = "\n".join(lines[-max_lines:])
    if len(joined) > max_chars:
        joined = joined[-max_chars:]
    return joined
