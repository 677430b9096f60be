"""Worker stages: building, launching and supervising external scrapers.

Public API:
    StageRequest, StageResult, StageStatus
    StageExecution(request, timeout).lines() -> async iterator of stdout lines
    run_stage(request, timeout) -> StageResult
    SecurityQuestionStage, TimetableStage, CalendarStage
"""
