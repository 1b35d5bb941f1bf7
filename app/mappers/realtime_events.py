from app.models import SpeakerType
from app.schemas.realtime import TranscriptEvent


def extract_transcripts(event: dict) -> list[tuple[SpeakerType, str]]:
    """Speech text carried by a realtime event, tagged with who said it."""
    try:
        kind = TranscriptEvent(event.get("type"))
    except ValueError:
        return []

    if kind is TranscriptEvent.agent_transcript_done:
        transcript = event.get("transcript")
        return [(SpeakerType.agent, transcript)] if isinstance(transcript, str) and transcript else []

    if kind is TranscriptEvent.user_transcription_completed:
        transcript = event.get("transcript")
        return [(SpeakerType.user, transcript)] if isinstance(transcript, str) and transcript else []

    item = event.get("item")
    if not isinstance(item, dict) or item.get("type") != "message":
        return []
    content = item.get("content")
    if not isinstance(content, list):
        return []
    speaker = SpeakerType.agent if item.get("role") == "assistant" else SpeakerType.user
    return [
        (speaker, part["transcript"])
        for part in content
        if isinstance(part, dict)
        and part.get("type") == "audio"
        and isinstance(part.get("transcript"), str)
        and part["transcript"]
    ]
