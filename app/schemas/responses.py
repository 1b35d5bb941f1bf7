from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class WebhookAck(BaseModel):
    status: str = "ok"
    message: str | None = None


class TranscriptEntry(BaseModel):
    id: str
    speaker: str  # "user" | "assistant"
    text: str
    timestamp: int  # epoch milliseconds


class TranscriptResponse(BaseModel):
    transcripts: list[TranscriptEntry]


class MeetingStatusResponse(BaseModel):
    id: str
    status: str
    error: str | None = None
    processingStartedAt: datetime | None = None
    startedAt: datetime | None = None
    endedAt: datetime | None = None


class ConversationStateSnapshot(BaseModel):
    state: str
    current_speaker: str | None = None
    is_responding: bool = False
    turn_count: int = 0
    last_event_at: int  # epoch milliseconds


class ConversationStateResponse(BaseModel):
    state: ConversationStateSnapshot
    timestamp: int


class StaleMeeting(BaseModel):
    id: str
    name: str
    processingStartedAt: datetime | None = None


class StaleMeetingsResponse(BaseModel):
    older_than_minutes: int
    meetings: list[StaleMeeting]


class AnalysisJobResponse(BaseModel):
    meeting_id: str
    status: str
    created_at: datetime
    finished_at: datetime | None = None
    next_meeting_id: str | None = None
    error: str | None = None
