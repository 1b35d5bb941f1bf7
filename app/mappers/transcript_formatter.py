import json
from datetime import datetime, timezone

from app.models import SpeakerType, TranscriptChunk
from app.schemas.responses import TranscriptEntry


def client_speaker(speaker_type: str) -> str:
    return "assistant" if speaker_type == SpeakerType.agent else "user"


def epoch_millis(value: datetime) -> int:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def to_transcript_entry(chunk: TranscriptChunk) -> TranscriptEntry:
    return TranscriptEntry(
        id=f"{chunk.meeting_id}-{chunk.sequence_number}",
        speaker=client_speaker(chunk.speaker_type),
        text=chunk.text,
        timestamp=epoch_millis(chunk.timestamp),
    )


def format_for_analysis(chunks: list[TranscriptChunk], agent_name: str) -> str:
    """Speaker-labelled transcript, serialized for the language model."""
    lines = [
        {
            "speaker_id": chunk.speaker_type,
            "text": chunk.text,
            "user": {
                "name": "User" if chunk.speaker_type == SpeakerType.user else agent_name,
            },
        }
        for chunk in chunks
    ]
    return json.dumps(lines, ensure_ascii=False)
