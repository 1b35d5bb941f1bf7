import asyncio
import logging
from collections.abc import Awaitable, Callable

from app.exceptions.custom import (
    AgentNotFoundError,
    InvalidMeetingPromptError,
    MalformedEventError,
    MeetingNotFoundError,
)
from app.jobs import AnalysisSupervisor
from app.mappers.realtime_events import extract_transcripts
from app.models import MeetingStatus
from app.schemas.responses import WebhookAck
from app.schemas.stream import (
    CallRecordingReadyEvent,
    CallSessionEndedEvent,
    CallSessionParticipantLeftEvent,
    CallSessionStartedEvent,
    CallTranscriptionReadyEvent,
    MessageNewEvent,
    WebhookEventType,
)
from app.services.conversation_state import ConversationStateTracker
from app.services.follow_up_chat import FollowUpChatService
from app.services.live_calls import LiveCall, LiveCallRegistry
from app.services.meeting_analysis import STATES_MARKER
from app.services.meeting_store import NOT_STARTABLE, MeetingStore
from app.services.stream_video import StreamVideoService
from app.services.transcript_collector import TranscriptCollector

logger = logging.getLogger(__name__)

SESSION_CONFIG = {
    "input_audio_transcription": {"model": "whisper-1"},
    "turn_detection": {
        "type": "server_vad",
        "threshold": 0.5,
        "prefix_padding_ms": 300,
        "silence_duration_ms": 500,
    },
    "modalities": ["text", "audio"],
    "voice": "alloy",
}


def _ended_while_starting(meeting_id: str) -> WebhookAck:
    logger.info("Meeting %s ended while the agent was joining", meeting_id)
    return WebhookAck(status="ignored", message="Meeting ended during start")


def _require_meeting_id(meeting_id: str | None) -> str:
    if not meeting_id:
        raise MalformedEventError("Missing meetingId")
    return meeting_id


class WebhookEventRouter:
    """Applies call-provider telemetry to meetings.

    Every status change goes through a guarded store update, so a repeated or
    late delivery leaves the meeting as it was.
    """

    def __init__(
        self,
        store: MeetingStore,
        collector: TranscriptCollector,
        live_calls: LiveCallRegistry,
        supervisor: AnalysisSupervisor,
        video: StreamVideoService,
        follow_up: FollowUpChatService,
    ):
        self._store = store
        self._collector = collector
        self._live_calls = live_calls
        self._supervisor = supervisor
        self._video = video
        self._follow_up = follow_up
        self._handlers: dict[WebhookEventType, Callable[..., Awaitable[WebhookAck]]] = {
            WebhookEventType.session_started: self._on_session_started,
            WebhookEventType.session_ended: self._on_session_ended,
            WebhookEventType.participant_left: self._on_participant_left,
            WebhookEventType.transcription_ready: self._on_transcription_ready,
            WebhookEventType.recording_ready: self._on_recording_ready,
            WebhookEventType.message_new: self._follow_up.reply,
        }

    @property
    def handled_event_types(self) -> set[WebhookEventType]:
        return set(self._handlers)

    async def dispatch(self, event) -> WebhookAck:
        event_type = WebhookEventType(event.type)
        logger.info("Processing event: %s", event_type)
        return await self._handlers[event_type](event)

    async def _on_session_started(self, event: CallSessionStartedEvent) -> WebhookAck:
        meeting_id = _require_meeting_id(event.meeting_id)

        meeting = await self._store.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(meeting_id)
        if meeting.status in NOT_STARTABLE:
            logger.info("Meeting %s already %s, ignoring session start", meeting_id, meeting.status)
            return WebhookAck(status="ignored", message=f"Meeting is {meeting.status}")

        agent = await self._store.get_agent(meeting.agent_id)
        if agent is None:
            raise AgentNotFoundError(meeting.agent_id)

        if not meeting.prompt or STATES_MARKER not in meeting.prompt:
            try:
                await self._video.end_call(meeting_id)
            except Exception:
                logger.exception("Failed to end call for meeting %s", meeting_id)
            raise InvalidMeetingPromptError(meeting_id)

        if not await self._store.start_meeting(meeting_id):
            logger.info("Meeting %s was started concurrently, ignoring", meeting_id)
            return WebhookAck(status="ignored", message="Meeting already started")

        # Registered before bridging so a session end arriving meanwhile can tear it down.
        live_call = self._live_calls.open(meeting_id)
        try:
            realtime = await self._video.connect_openai(meeting_id, agent.id)
        except Exception:
            await self._live_calls.close(meeting_id)
            raise

        if not self._is_live(live_call):
            await realtime.close()
            return _ended_while_starting(meeting_id)
        live_call.realtime = realtime

        try:
            await realtime.update_session(instructions=meeting.prompt, **SESSION_CONFIG)
        except Exception:
            await self._live_calls.close(meeting_id)
            raise
        if not self._is_live(live_call):
            return _ended_while_starting(meeting_id)

        tracker = live_call.tracker

        async def on_realtime_event(realtime_event: dict) -> None:
            await self.handle_realtime_event(meeting_id, tracker, realtime_event)

        realtime.on_event(on_realtime_event)
        live_call.listener = asyncio.create_task(realtime.listen())
        logger.info("Real-time transcript collection started for meeting %s", meeting_id)
        return WebhookAck()

    def _is_live(self, live_call: LiveCall) -> bool:
        return self._live_calls.get(live_call.meeting_id) is live_call

    async def handle_realtime_event(
        self, meeting_id: str, tracker: ConversationStateTracker, event: dict
    ) -> None:
        for speaker, text in extract_transcripts(event):
            await self._collector.store_chunk(meeting_id, speaker, text)

        event_type = event.get("type")
        if isinstance(event_type, str):
            state = tracker.handle_event(event_type)
            if state is not None:
                logger.debug("State update for %s: %s -> %s", meeting_id, event_type, state)

    async def _on_participant_left(self, event: CallSessionParticipantLeftEvent) -> WebhookAck:
        meeting_id = _require_meeting_id(event.meeting_id)
        try:
            await self._video.end_call(meeting_id)
        except Exception:
            logger.exception("Failed to end call for meeting %s", meeting_id)
        return WebhookAck()

    async def _on_session_ended(self, event: CallSessionEndedEvent) -> WebhookAck:
        meeting_id = _require_meeting_id(event.meeting_id)

        await self._collector.mark_transcript_collected(meeting_id)
        try:
            if await self._store.begin_processing(meeting_id):
                self._supervisor.submit(meeting_id)
                ack = WebhookAck()
            else:
                logger.info("Meeting %s is not active, ignoring session end", meeting_id)
                ack = WebhookAck(status="ignored", message="Meeting is not active")
        finally:
            await self._live_calls.close(meeting_id)
            self._collector.cleanup(meeting_id)
        return ack

    async def _on_transcription_ready(self, event: CallTranscriptionReadyEvent) -> WebhookAck:
        meeting_id = _require_meeting_id(event.meeting_id)
        if not await self._store.set_transcript_url(meeting_id, event.call_transcription.url):
            raise MeetingNotFoundError(meeting_id)
        logger.info("Stored provider transcript URL for meeting %s", meeting_id)
        return WebhookAck()

    async def _on_recording_ready(self, event: CallRecordingReadyEvent) -> WebhookAck:
        meeting_id = _require_meeting_id(event.meeting_id)
        if not await self._store.set_recording_url(meeting_id, event.call_recording.url):
            raise MeetingNotFoundError(meeting_id)
        logger.info("Stored recording URL for meeting %s", meeting_id)
        return WebhookAck()
