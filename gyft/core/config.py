import sys
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Paths are resolved to absolute paths at load time because they are handed
    to worker processes whose working directory is a run-scoped scratch dir.

    Worker invocation
    ─────────────────
    Every stage runs ``{python_executable} {scripts_dir}/{script} args...``.
    The script names default to the ones shipped with the portal scrapers.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Artifact store root (cookies/, timetables/, html/, scratch/ live below it)
    tempstore_dir: Path = Path("tempstore")

    # Worker scripts
    scripts_dir: Path = Path("scripts")
    python_executable: str = sys.executable
    security_question_script: str = "getSecurityQuestion.py"
    timetable_script: str = "getTimetable.py"
    calendar_script: str = "generate_ics.py"

    @field_validator("tempstore_dir", "scripts_dir", mode="after")
    @classmethod
    def resolve_dir(cls, v: Path) -> Path:
        return v.expanduser().resolve()

    # Wall-clock limit for a single worker process, in seconds.
    stage_timeout_seconds: float = 120.0

    # Identifiers are used as path components; anything else is rejected.
    user_id_pattern: str = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"
    user_id_max_length: int = 64

    # Artifacts older than this are reported as stale by the listing endpoint.
    artifact_stale_after_hours: int = 168

    # CORS: comma-separated list of allowed origins.
    cors_origins: list[str] = ["*"]

    # Rate limiting: SlowAPI format, e.g. "10/minute", "100/hour".
    pipeline_rate_limit: str = "10/minute"

    # Sentry: leave blank to disable error capture.
    sentry_dsn: str = ""

    # App
    debug: bool = True


def get_settings() -> Settings:
    return Settings()
