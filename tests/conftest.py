"""Shared test fixtures for the pipeline test suite.

Worker processes are real: each test gets a scripts directory containing
small stand-ins for the portal scrapers that honour the worker argument
contract and deposit artifacts the way the real ones do. Every invocation is
appended to ``invocations.log`` in the scripts directory so tests can assert
which stages ran and in what order.

Failure switches understood by the fake workers:
  - user starting with "noquestion"  → security-question worker exits 3
  - password "wrong"                 → timetable worker exits 1
  - user starting with "brokenics"   → calendar worker prints, then exits 2
"""

import textwrap
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from gyft.artifacts.storage import ArtifactStore
from gyft.core.config import Settings
from gyft.main import create_app
from gyft.pipeline.orchestrator import PipelineOrchestrator

_LOG_HELPER = """
import sys
from pathlib import Path

def record(name):
    with open(Path(__file__).parent / "invocations.log", "a") as fh:
        fh.write(name + " " + " ".join(sys.argv[1:2]) + "\\n")
"""

SECURITY_QUESTION_WORKER = _LOG_HELPER + """
record("security_question")
user, cookie_dir = sys.argv[1], Path(sys.argv[2])
if user.startswith("noquestion"):
    print("portal rejected roll number", file=sys.stderr)
    sys.exit(3)
cookie_dir.mkdir(parents=True, exist_ok=True)
(cookie_dir / (user + ".cookie")).write_text("JSESSIONID=abc123")
print("What is the name of your first pet?")
"""

TIMETABLE_WORKER = _LOG_HELPER + """
import json
record("timetable")
user, password, answer, session, tempstore = sys.argv[1:6]
if password == "wrong":
    print("Invalid credentials", file=sys.stderr)
    sys.exit(1)
print("Logged in as " + user)
out = Path(tempstore) / "timetables"
out.mkdir(parents=True, exist_ok=True)
slots = [
    {"day": "MO", "start": "0800", "end": "0855", "course": "CS10001"},
    {"day": "TU", "start": "1000", "end": "1155", "course": "MA10002"},
]
(out / (user + ".json")).write_text(json.dumps({"user": user, "slots": slots}))
print("Timetable saved")
"""

CALENDAR_WORKER = _LOG_HELPER + """
import json
import os
import time
record("calendar")
user, tempdir, scriptdir = sys.argv[1:4]
root = Path(tempdir)
data = json.loads((root / "timetables" / (user + ".json")).read_text())
print("Parsing timetable", flush=True)
if user.startswith("brokenics"):
    print("ics writer crashed", file=sys.stderr)
    sys.exit(2)
events = "".join(
    "BEGIN:VEVENT\\r\\nSUMMARY:%s\\r\\nDTSTART:%s\\r\\nEND:VEVENT\\r\\n"
    % (slot["course"], slot["start"])
    for slot in data["slots"]
)
ics = "BEGIN:VCALENDAR\\r\\nVERSION:2.0\\r\\n" + events + "END:VCALENDAR\\r\\n"
target = root / "timetables" / (user + ".ics")
tmp = target.with_suffix(".ics.part")
with open(tmp, "w") as fh:
    half = len(ics) // 2
    fh.write(ics[:half])
    fh.flush()
    time.sleep(0.05)
    fh.write(ics[half:])
os.replace(tmp, target)
html_dir = root / "html"
html_dir.mkdir(parents=True, exist_ok=True)
(html_dir / (user + ".html")).write_text("<table><tr><td>CS10001</td></tr></table>")
print("Generated ICS for " + user)
"""


def _read_invocations(scripts_dir: Path) -> list[str]:
    log = scripts_dir / "invocations.log"
    if not log.exists():
        return []
    return log.read_text().splitlines()


@pytest.fixture
def scripts_dir(tmp_path) -> Path:
    d = tmp_path / "scripts"
    d.mkdir()
    (d / "getSecurityQuestion.py").write_text(textwrap.dedent(SECURITY_QUESTION_WORKER))
    (d / "getTimetable.py").write_text(textwrap.dedent(TIMETABLE_WORKER))
    (d / "generate_ics.py").write_text(textwrap.dedent(CALENDAR_WORKER))
    return d


@pytest.fixture
def settings(tmp_path, scripts_dir) -> Settings:
    return Settings(
        _env_file=None,
        tempstore_dir=tmp_path / "tempstore",
        scripts_dir=scripts_dir,
        stage_timeout_seconds=30,
        sentry_dsn="",
        debug=False,
    )


@pytest.fixture
def store(settings) -> ArtifactStore:
    return ArtifactStore.from_settings(settings)


@pytest.fixture
def orchestrator(settings, store) -> PipelineOrchestrator:
    return PipelineOrchestrator(settings, store)


@pytest.fixture
def app(settings):
    """Create a FastAPI app bound to the per-test tempstore and scripts.

    The SlowAPI rate limiter keeps in-memory buckets on the module-level
    limiter; reset them so tests do not throttle each other.
    """
    from gyft.core.limiter import limiter

    try:
        limiter.reset()
    except Exception:
        pass

    return create_app(settings)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def invocations(scripts_dir):
    """Return a callable listing ``"<stage> <user>"`` for every worker run so far."""
    return lambda: _read_invocations(scripts_dir)
