"""Per-user run serialization.

Two runs for the same user write the same cookie, timetable and calendar
files. The guard hands out one asyncio.Lock per user id so such runs execute
one after the other; runs for different users are unaffected.

A run that finds its user's lock already held is an overlapping run. It is
logged and then waits its turn. Locks are dropped from the table as soon as
no run holds or waits for them, so the table does not grow with the number
of users ever seen.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

logger = structlog.get_logger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class UserRunGuard:
    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self.overlaps_detected = 0

    def is_busy(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, user_id: str, run_id: str = "") -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _Entry()
        entry.users += 1

        if entry.lock.locked():
            self.overlaps_detected += 1
            logger.warning(
                "overlapping run",
                user_id=user_id,
                run_id=run_id,
                waiting=entry.users - 1,
            )

        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(user_id) is entry:
                del self._entries[user_id]

    def __len__(self) -> int:
        return len(self._entries)
