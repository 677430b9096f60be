"""Pipeline orchestration.

Public API:
    PipelineOrchestrator.fetch_security_question(user) -> str
    PipelineOrchestrator.generate_calendar(user, password, answer, session_token)
        -> async iterator of calendar-stage output lines
    UserRunGuard: per-user serialization of runs
"""
