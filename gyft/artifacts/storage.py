"""Filesystem artifact store.

Every artifact is addressed by ``(user_id, kind)`` and lives at a fixed
location below the store root:

    cookies/{user}.cookie       security_question  (portal session cache)
    timetables/{user}.json      timetable          (scraped timetable data)
    timetables/{user}.ics       calendar           (generated calendar file)
    html/{user}.html            timetable_view     (rendered timetable)
    scratch/{user}/{run_id}/    per-run working directory for workers,
                                removed when the run ends

Security:
  - `validate_user_id()` rejects identifiers containing `..`, path
    separators, null bytes or anything outside the configured pattern
    before any path is built.
  - `resolve_path()` additionally asserts the result stays under the root.

The store does no locking. Writes go through a temp file in the target
directory followed by `os.replace()`, so readers see either the previous or
the new content, never a torn file. Runs for the same user are serialized by
`gyft.pipeline.guard`.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Union

from gyft.core.config import Settings
from gyft.core.errors import ArtifactNotFound, InvalidIdentifier

logger = logging.getLogger(__name__)

DEFAULT_USER_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"
DEFAULT_USER_ID_MAX_LENGTH = 64
SCRATCH_DIR = "scratch"


class ArtifactKind(str, Enum):
    SECURITY_QUESTION = "security_question"
    TIMETABLE = "timetable"
    CALENDAR = "calendar"
    TIMETABLE_VIEW = "timetable_view"


# kind -> (directory below root, file extension)
_LAYOUT: dict[ArtifactKind, tuple[str, str]] = {
    ArtifactKind.SECURITY_QUESTION: ("cookies", ".cookie"),
    ArtifactKind.TIMETABLE: ("timetables", ".json"),
    ArtifactKind.CALENDAR: ("timetables", ".ics"),
    ArtifactKind.TIMETABLE_VIEW: ("html", ".html"),
}


def validate_user_id(
    user_id: str,
    pattern: str = DEFAULT_USER_ID_PATTERN,
    max_length: int = DEFAULT_USER_ID_MAX_LENGTH,
) -> str:
    """Return `user_id` unchanged if it is safe to use as a path component.

    Raises:
        InvalidIdentifier: empty, too long, traversal sequence, separator,
            null byte, or no match for `pattern`.
    """
    if not user_id:
        raise InvalidIdentifier(user_id, "must not be empty")
    if len(user_id) > max_length:
        raise InvalidIdentifier(user_id, f"longer than {max_length} characters")
    if ".." in user_id:
        raise InvalidIdentifier(user_id, "path traversal detected")
    if "/" in user_id or "\\" in user_id:
        raise InvalidIdentifier(user_id, "path separator detected")
    if "\x00" in user_id:
        raise InvalidIdentifier(user_id, "null byte detected")
    if not re.match(pattern, user_id):
        raise InvalidIdentifier(user_id, "unsupported characters")
    return user_id


@dataclass
class ArtifactInfo:
    """Presence and age of one artifact, as reported to operators."""

    kind: ArtifactKind
    path: Path
    exists: bool
    size_bytes: Optional[int] = None
    modified_at: Optional[datetime] = None
    stale: bool = False


class ArtifactStore:
    def __init__(
        self,
        root: Union[str, Path],
        user_id_pattern: str = DEFAULT_USER_ID_PATTERN,
        user_id_max_length: int = DEFAULT_USER_ID_MAX_LENGTH,
        stale_after: timedelta = timedelta(days=7),
    ):
        self.root = Path(os.path.abspath(root))
        self.user_id_pattern = user_id_pattern
        self.user_id_max_length = user_id_max_length
        self.stale_after = stale_after

    @classmethod
    def from_settings(cls, settings: Settings) -> "ArtifactStore":
        return cls(
            settings.tempstore_dir,
            user_id_pattern=settings.user_id_pattern,
            user_id_max_length=settings.user_id_max_length,
            stale_after=timedelta(hours=settings.artifact_stale_after_hours),
        )

    # ------------------------------------------------------------------
    # Paths (no I/O)
    # ------------------------------------------------------------------

    def validate(self, user_id: str) -> str:
        return validate_user_id(user_id, self.user_id_pattern, self.user_id_max_length)

    def kind_dir(self, kind: ArtifactKind) -> Path:
        return self.root / _LAYOUT[kind][0]

    def extension(self, kind: ArtifactKind) -> str:
        return _LAYOUT[kind][1]

    def resolve_path(self, user_id: str, kind: ArtifactKind) -> Path:
        """Map ``(user_id, kind)`` to its file location. Pure, no I/O."""
        self.validate(user_id)
        path = self.kind_dir(kind) / f"{user_id}{self.extension(kind)}"
        self._ensure_within_root(path)
        return path

    def _ensure_within_root(self, path: Path) -> None:
        normalised = os.path.normpath(path)
        if os.path.commonpath([normalised, str(self.root)]) != str(self.root):
            raise InvalidIdentifier(str(path), "resolves outside the artifact store")

    # ------------------------------------------------------------------
    # Filesystem access
    # ------------------------------------------------------------------

    def ensure_layout(self) -> None:
        """Create the fixed directory layout below the root."""
        for subdir in {d for d, _ in _LAYOUT.values()} | {SCRATCH_DIR}:
            (self.root / subdir).mkdir(parents=True, exist_ok=True)

    def exists(self, user_id: str, kind: ArtifactKind) -> bool:
        return self.resolve_path(user_id, kind).is_file()

    def write(
        self,
        user_id: str,
        kind: ArtifactKind,
        data: Union[bytes, Iterable[bytes]],
    ) -> Path:
        """Atomically create or overwrite an artifact. Last write wins."""
        path = self.resolve_path(user_id, kind)
        path.parent.mkdir(parents=True, exist_ok=True)

        chunks = [data] if isinstance(data, (bytes, bytearray)) else data
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                for chunk in chunks:
                    fh.write(chunk)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Wrote %s artifact for %s (%s)", kind.value, user_id, path)
        return path

    def open_for_read(self, user_id: str, kind: ArtifactKind) -> BinaryIO:
        """Open an artifact for binary reading. Caller closes the stream."""
        path = self.resolve_path(user_id, kind)
        try:
            return open(path, "rb")
        except (FileNotFoundError, IsADirectoryError):
            raise ArtifactNotFound(user_id, kind.value) from None

    def scratch_dir(self, user_id: str, run_id: str) -> Path:
        """Create and return the working directory for one run."""
        self.validate(user_id)
        self.validate(run_id)
        path = self.root / SCRATCH_DIR / user_id / run_id
        self._ensure_within_root(path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def discard_scratch(self, user_id: str, run_id: str) -> None:
        """Remove a run's working directory, and the user's scratch dir once empty."""
        self.validate(user_id)
        self.validate(run_id)
        user_dir = self.root / SCRATCH_DIR / user_id
        run_dir = user_dir / run_id
        self._ensure_within_root(run_dir)
        shutil.rmtree(run_dir, ignore_errors=True)
        try:
            user_dir.rmdir()
        except OSError:
            # Missing, or still holds another run's directory.
            pass

    def list_artifacts(self, user_id: str) -> list[ArtifactInfo]:
        """Report presence, size and staleness of every artifact kind."""
        now = datetime.now(timezone.utc)
        infos: list[ArtifactInfo] = []
        for kind in ArtifactKind:
            path = self.resolve_path(user_id, kind)
            try:
                st = path.stat()
            except FileNotFoundError:
                infos.append(ArtifactInfo(kind=kind, path=path, exists=False))
                continue
            modified_at = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
            infos.append(
                ArtifactInfo(
                    kind=kind,
                    path=path,
                    exists=True,
                    size_bytes=st.st_size,
                    modified_at=modified_at,
                    stale=now - modified_at > self.stale_after,
                )
            )
        stale = [i.kind.value for i in infos if i.stale]
        if stale:
            logger.warning("Stale artifacts for %s: %s", user_id, ", ".join(stale))
        return infos
