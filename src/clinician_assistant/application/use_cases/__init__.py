"""Use-case layer: business logic decoupled from the HTTP transport."""

from clinician_assistant.application.use_cases.assistant import (
    AssistantUseCase,
    PipelineOutcome,
    TurnResult,
)

__all__ = ["AssistantUseCase", "PipelineOutcome", "TurnResult"]
