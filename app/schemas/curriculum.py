from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(StrEnum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class PromptType(StrEnum):
    continuation = "continuation"
    advancement = "advancement"
    adaptive = "adaptive"


class Session(BaseModel):
    session_id: str
    session_name: str
    completion_criteria: list[str] = []
    prompt: str = ""


class Blueprint(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    description: str | None = None
    sessions: list[Session] = []


class SessionProgress(BaseModel):
    # The model may add its own tracking fields; keep them round-tripping.
    model_config = ConfigDict(extra="allow")

    session_id: str
    session_name: str
    session_status: SessionStatus
    completion_notes: str | None = None
    participant_specific_notes: str | None = None
    criteria_met: list[str] = []
    criteria_pending: list[str] = []
    date_completed: str | None = None


class ParticipantContext(BaseModel):
    communication_style: str = "Adaptive"
    core_motivations: str = "Personal growth and achievement"
    strengths_demonstrated: str = "Engagement and reflection"
    areas_of_concern: str = ""
    personal_context: str = ""


class PromptGenerationContext(BaseModel):
    prompt_type: PromptType
    reason: str | None = None
    previous_session: SessionProgress | None = None
    next_session: Session | None = None
    participant_context: ParticipantContext = Field(default_factory=ParticipantContext)


class AnalyzerInput(BaseModel):
    blueprint_sessions: list[Session]
    current_progress: list[SessionProgress] = []
    transcript: str
    prompt_context: PromptGenerationContext | None = None


class AnalyzerOutput(BaseModel):
    progress_summary: str
    updated_progress: list[SessionProgress]
    next_session_prompt: str
