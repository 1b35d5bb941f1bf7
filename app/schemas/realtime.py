from enum import StrEnum


class TelemetryEvent(StrEnum):
    """Realtime events that move the conversation state."""

    speech_started = "input_audio_buffer.speech_started"
    speech_stopped = "input_audio_buffer.speech_stopped"
    response_created = "response.created"
    audio_delta = "response.audio.delta"
    function_call_delta = "response.function_call_arguments.delta"
    response_done = "response.done"
    session_updated = "session.updated"


class TranscriptEvent(StrEnum):
    """Realtime events that carry finished speech text."""

    agent_transcript_done = "response.audio_transcript.done"
    user_transcription_completed = "conversation.item.input_audio_transcription.completed"
    item_created = "conversation.item.created"
