"""End-to-end tests for the pipeline HTTP routes.

Requests go through the full app (middleware, rate limiter, exception
handlers) and spawn the fake workers from conftest.
"""

import asyncio
import textwrap

from httpx import ASGITransport, AsyncClient

from gyft.artifacts.storage import ArtifactKind
from gyft.main import create_app

USER = "12345"
TIMETABLE_URL = f"/pipeline/timetable/{USER}/hunter2/rex/sess-abc"


class TestSecurityQuestionRoute:
    async def test_returns_plain_text_question(self, client: AsyncClient) -> None:
        res = await client.get(f"/pipeline/security-question/{USER}")

        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/plain")
        assert res.text == "What is the name of your first pet?"

    async def test_worker_failure_is_502_with_reason(self, client: AsyncClient) -> None:
        res = await client.get("/pipeline/security-question/noquestion1")

        assert res.status_code == 502
        body = res.json()
        assert body["code"] == "worker_exit_failure"
        assert body["stage"] == "security_question"
        assert "rejected roll number" in body["detail"]

    async def test_missing_worker_script_is_exit_failure(self, client: AsyncClient, settings) -> None:
        settings.security_question_script = "does_not_exist.py"
        res = await client.get(f"/pipeline/security-question/{USER}")

        # The interpreter starts but cannot open the script: non-zero exit.
        assert res.status_code == 502

    async def test_missing_interpreter_is_500(self, client: AsyncClient, settings, tmp_path) -> None:
        settings.python_executable = str(tmp_path / "no-python")
        res = await client.get(f"/pipeline/security-question/{USER}")

        assert res.status_code == 500
        assert res.json()["code"] == "worker_spawn_failure"

    async def test_invalid_identifier_is_400(self, client: AsyncClient, invocations) -> None:
        res = await client.get("/pipeline/security-question/a..b")

        assert res.status_code == 400
        assert res.json()["code"] == "invalid_identifier"
        assert invocations() == []


class TestTimetableRoute:
    async def test_streams_generation_lines(self, client: AsyncClient) -> None:
        res = await client.get(TIMETABLE_URL)

        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/plain")
        assert res.text == f"Parsing timetable\nGenerated ICS for {USER}\n"

    async def test_calendar_downloadable_after_run(self, client: AsyncClient, store) -> None:
        before = await client.get(f"/pipeline/calendar/{USER}")
        assert before.status_code == 404

        await client.get(TIMETABLE_URL)
        after = await client.get(f"/pipeline/calendar/{USER}")

        assert after.status_code == 200
        assert after.headers["content-type"].startswith("text/calendar")
        assert after.headers["content-disposition"] == f'attachment; filename="{USER}.ics"'
        with open(store.resolve_path(USER, ArtifactKind.CALENDAR), "rb") as fh:
            assert after.content == fh.read()

    async def test_timetable_view_downloadable_after_run(self, client: AsyncClient) -> None:
        await client.get(TIMETABLE_URL)
        res = await client.get(f"/pipeline/timetable-view/{USER}")

        assert res.status_code == 200
        assert res.headers["content-disposition"] == f'attachment; filename="{USER}.html"'
        assert b"CS10001" in res.content

    async def test_timetable_failure_is_502_and_no_calendar(
        self, client: AsyncClient, invocations
    ) -> None:
        res = await client.get(f"/pipeline/timetable/{USER}/wrong/rex/sess-abc")

        assert res.status_code == 502
        body = res.json()
        assert body["stage"] == "timetable"
        assert "Invalid credentials" in body["detail"]
        assert invocations() == [f"timetable {USER}"]

        download = await client.get(f"/pipeline/calendar/{USER}")
        assert download.status_code == 404
        assert download.json()["code"] == "artifact_not_found"

    async def test_calendar_failure_mid_stream_ends_with_error_line(self, client: AsyncClient) -> None:
        res = await client.get("/pipeline/timetable/brokenics1/hunter2/rex/sess-abc")

        assert res.status_code == 200
        lines = res.text.splitlines()
        assert lines[0] == "Parsing timetable"
        assert lines[-1] == "ERROR: calendar: ics writer crashed"

    async def test_calendar_failure_before_output_is_502(
        self, client: AsyncClient, scripts_dir
    ) -> None:
        (scripts_dir / "generate_ics.py").write_text(textwrap.dedent("""
            import sys
            print("no timetable found", file=sys.stderr)
            sys.exit(1)
        """))

        res = await client.get(TIMETABLE_URL)

        assert res.status_code == 502
        assert res.json()["stage"] == "calendar"

    async def test_timeout_is_504(self, client: AsyncClient, settings, scripts_dir) -> None:
        (scripts_dir / "getTimetable.py").write_text("import time\ntime.sleep(30)\n")
        settings.stage_timeout_seconds = 0.5

        res = await client.get(TIMETABLE_URL)

        assert res.status_code == 504
        assert res.json()["code"] == "worker_timeout"

    async def test_concurrent_requests_yield_parseable_calendar(self, client: AsyncClient) -> None:
        first, second = await asyncio.gather(client.get(TIMETABLE_URL), client.get(TIMETABLE_URL))

        assert first.status_code == second.status_code == 200
        download = await client.get(f"/pipeline/calendar/{USER}")
        ics = download.text
        assert ics.startswith("BEGIN:VCALENDAR")
        assert ics.rstrip().endswith("END:VCALENDAR")

    async def test_listing_reflects_run(self, client: AsyncClient) -> None:
        await client.get(f"/pipeline/security-question/{USER}")
        await client.get(TIMETABLE_URL)

        res = await client.get(f"/pipeline/artifacts/{USER}")

        assert all(a["exists"] for a in res.json()["artifacts"])


class TestRateLimit:
    async def test_pipeline_routes_are_throttled_per_user(self, client: AsyncClient) -> None:
        statuses = [
            (await client.get("/pipeline/security-question/bad..user")).status_code
            for _ in range(11)
        ]
        assert statuses[0] == 400
        assert 429 in statuses
        first_throttled = statuses.index(429)
        assert set(statuses[first_throttled:]) == {429}

    async def test_other_users_unaffected(self, client: AsyncClient) -> None:
        for _ in range(11):
            await client.get("/pipeline/security-question/bad..user")
        res = await client.get("/pipeline/security-question/other..user")
        assert res.status_code == 400

    async def test_limit_comes_from_app_settings(self, settings) -> None:
        from gyft.core.limiter import limiter

        limiter.reset()
        app = create_app(settings.model_copy(update={"pipeline_rate_limit": "2/minute"}))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            statuses = [
                (await ac.get("/pipeline/security-question/bad..user")).status_code
                for _ in range(4)
            ]

        assert statuses[0] == 400
        assert statuses[-1] == 429
        assert statuses.index(429) <= 2
