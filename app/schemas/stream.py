from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class WebhookEventType(StrEnum):
    session_started = "call.session_started"
    session_ended = "call.session_ended"
    participant_left = "call.session_participant_left"
    transcription_ready = "call.transcription_ready"
    recording_ready = "call.recording_ready"
    message_new = "message.new"


def meeting_id_from_cid(call_cid: str | None) -> str | None:
    """``call_cid`` is formatted as ``type:id``."""
    if not call_cid or ":" not in call_cid:
        return None
    return call_cid.split(":", 1)[1] or None


class CallCustom(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    meeting_id: str | None = Field(default=None, alias="meetingId")
    meeting_name: str | None = Field(default=None, alias="meetingName")


class CallInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    cid: str | None = None
    custom: CallCustom = Field(default_factory=CallCustom)


class _CallEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    call_cid: str | None = None
    call: CallInfo = Field(default_factory=CallInfo)

    @property
    def meeting_id(self) -> str | None:
        return self.call.custom.meeting_id


class CallSessionStartedEvent(_CallEvent):
    type: Literal["call.session_started"]


class CallSessionEndedEvent(_CallEvent):
    type: Literal["call.session_ended"]


class CallSessionParticipantLeftEvent(_CallEvent):
    type: Literal["call.session_participant_left"]

    @property
    def meeting_id(self) -> str | None:
        return meeting_id_from_cid(self.call_cid)


class CallArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str


class CallTranscriptionReadyEvent(_CallEvent):
    type: Literal["call.transcription_ready"]
    call_transcription: CallArtifact

    @property
    def meeting_id(self) -> str | None:
        return meeting_id_from_cid(self.call_cid)


class CallRecordingReadyEvent(_CallEvent):
    type: Literal["call.recording_ready"]
    call_recording: CallArtifact

    @property
    def meeting_id(self) -> str | None:
        return meeting_id_from_cid(self.call_cid)


class ChatUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    text: str | None = None
    user: ChatUser | None = None


class MessageNewEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["message.new"]
    channel_id: str | None = None
    user: ChatUser | None = None
    message: ChatMessage | None = None


WebhookEvent = Annotated[
    Union[
        CallSessionStartedEvent,
        CallSessionEndedEvent,
        CallSessionParticipantLeftEvent,
        CallTranscriptionReadyEvent,
        CallRecordingReadyEvent,
        MessageNewEvent,
    ],
    Field(discriminator="type"),
]
