import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import timedelta

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.dependencies import (
    CollectorDep,
    LiveCallsDep,
    MeetingStoreDep,
    SettingsDep,
    SupervisorDep,
)
from app.exceptions.custom import MeetingNotFoundError
from app.mappers.transcript_formatter import to_transcript_entry
from app.schemas.responses import (
    AnalysisJobResponse,
    ConversationStateResponse,
    MeetingStatusResponse,
    StaleMeeting,
    StaleMeetingsResponse,
    TranscriptEntry,
    TranscriptResponse,
)
from app.services.transcript_collector import TranscriptCollector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/meetings")


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def transcript_event_stream(
    meeting_id: str,
    collector: TranscriptCollector,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float = 30.0,
) -> AsyncIterator[str]:
    """Server-sent events for one meeting's transcript.

    Subscribes before reading the stored transcript so nothing said in
    between is lost; entries already sent in ``init`` are skipped.
    """
    queue: asyncio.Queue[TranscriptEntry] = asyncio.Queue()
    token = collector.subscribe(meeting_id, queue.put_nowait)
    logger.info("Transcript stream opened for meeting %s", meeting_id)
    try:
        entries = [to_transcript_entry(c) for c in await collector.get_transcript(meeting_id)]
        sent = {entry.id for entry in entries}
        yield _sse("init", {"transcripts": [entry.model_dump() for entry in entries]})

        while True:
            try:
                entry = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                if await is_disconnected():
                    break
                yield ":keepalive\n\n"
                continue
            if entry.id in sent:
                continue
            yield _sse("transcript", entry.model_dump())
    finally:
        collector.unsubscribe(meeting_id, token)
        logger.info("Transcript stream closed for meeting %s", meeting_id)


@router.get("/stale", response_model=StaleMeetingsResponse)
async def stale_meetings(store: MeetingStoreDep, settings: SettingsDep) -> StaleMeetingsResponse:
    minutes = settings.stale_processing_minutes
    meetings = await store.list_stale_processing(timedelta(minutes=minutes))
    return StaleMeetingsResponse(
        older_than_minutes=minutes,
        meetings=[
            StaleMeeting(id=m.id, name=m.name, processingStartedAt=m.processing_started_at)
            for m in meetings
        ],
    )


@router.get("/{meeting_id}/status", response_model=MeetingStatusResponse)
async def meeting_status(meeting_id: str, store: MeetingStoreDep) -> MeetingStatusResponse:
    meeting = await store.get_meeting(meeting_id)
    if meeting is None:
        raise MeetingNotFoundError(meeting_id)
    return MeetingStatusResponse(
        id=meeting.id,
        status=meeting.status,
        error=meeting.error,
        processingStartedAt=meeting.processing_started_at,
        startedAt=meeting.started_at,
        endedAt=meeting.ended_at,
    )


@router.get("/{meeting_id}/state", response_model=ConversationStateResponse)
async def conversation_state(meeting_id: str, live_calls: LiveCallsDep) -> ConversationStateResponse:
    call = live_calls.get(meeting_id)
    if call is None:
        raise HTTPException(status_code=404, detail="No active call for meeting")
    return ConversationStateResponse(
        state=call.tracker.get_state(),
        timestamp=int(time.time() * 1000),
    )


@router.get("/{meeting_id}/transcripts", response_model=TranscriptResponse)
async def transcripts(meeting_id: str, collector: CollectorDep) -> TranscriptResponse:
    chunks = await collector.get_transcript(meeting_id)
    return TranscriptResponse(transcripts=[to_transcript_entry(c) for c in chunks])


@router.get("/{meeting_id}/transcripts/stream")
async def transcripts_stream(
    meeting_id: str,
    request: Request,
    collector: CollectorDep,
    settings: SettingsDep,
) -> StreamingResponse:
    return StreamingResponse(
        transcript_event_stream(
            meeting_id,
            collector,
            request.is_disconnected,
            keepalive_seconds=settings.transcript_keepalive_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/{meeting_id}/analysis", response_model=AnalysisJobResponse)
async def analysis_job(meeting_id: str, supervisor: SupervisorDep) -> AnalysisJobResponse:
    job = supervisor.get_job(meeting_id)
    if job is None:
        raise HTTPException(status_code=404, detail="No analysis job for meeting")
    return AnalysisJobResponse(**job.model_dump(mode="json"))


@router.post("/{meeting_id}/cancel", response_model=MeetingStatusResponse)
async def cancel_meeting(
    meeting_id: str,
    store: MeetingStoreDep,
    live_calls: LiveCallsDep,
) -> MeetingStatusResponse:
    meeting = await store.get_meeting(meeting_id)
    if meeting is None:
        raise MeetingNotFoundError(meeting_id)
    if not await store.cancel_meeting(meeting_id):
        raise HTTPException(status_code=409, detail=f"Meeting is {meeting.status}")
    await live_calls.close(meeting_id)
    return await meeting_status(meeting_id, store)
