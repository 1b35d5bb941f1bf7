import logging
import uuid
from dataclasses import dataclass

from pydantic import ValidationError

from app.exceptions.custom import MeetingNotFoundError
from app.mappers.transcript_formatter import format_for_analysis
from app.models import Meeting, MeetingStatus
from app.retry import with_retry
from app.schemas.curriculum import AnalyzerInput, Blueprint, SessionProgress
from app.services.claude import ClaudeService
from app.services.meeting_analysis import (
    MeetingAnalyzer,
    determine_prompt_type,
    find_next_session,
    reconcile_progress,
)
from app.services.meeting_store import MeetingStore
from app.services.transcript_collector import TranscriptCollector

logger = logging.getLogger(__name__)

_SUMMARY_SYSTEM_PROMPT = (
    "You are an expert summarizer. Write readable, concise content about this "
    "meeting transcript."
)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    delay: float


@dataclass
class PipelineOutcome:
    meeting_id: str
    status: MeetingStatus
    error: str | None = None
    next_meeting_id: str | None = None


def _blueprint_of(meeting: Meeting) -> Blueprint | None:
    snapshot = meeting.agent.blueprint_snapshot if meeting.agent else None
    if not snapshot:
        return None
    try:
        blueprint = Blueprint.model_validate(snapshot)
    except ValidationError:
        logger.warning("Agent %s has an unreadable blueprint snapshot", meeting.agent_id)
        return None
    return blueprint if blueprint.sessions else None


class PostCallPipeline:
    """Turns an ended call's transcript into progress and the next meeting.

    Each run ends with exactly one terminal write: ``completed`` on success,
    ``failed`` (best-effort) on any error.
    """

    def __init__(
        self,
        store: MeetingStore,
        collector: TranscriptCollector,
        analyzer: MeetingAnalyzer,
        claude: ClaudeService,
        store_retry: RetryPolicy = RetryPolicy(attempts=3, delay=1.0),
        llm_retry: RetryPolicy = RetryPolicy(attempts=2, delay=2.0),
    ):
        self._store = store
        self._collector = collector
        self._analyzer = analyzer
        self._claude = claude
        self._store_retry = store_retry
        self._llm_retry = llm_retry

    async def _with_store_retry(self, operation, label: str):
        return await with_retry(
            operation, self._store_retry.attempts, self._store_retry.delay, label=label
        )

    async def _with_llm_retry(self, operation, label: str):
        return await with_retry(
            operation, self._llm_retry.attempts, self._llm_retry.delay, label=label
        )

    async def process(self, meeting_id: str) -> PipelineOutcome:
        logger.info("Starting post-call analysis for meeting %s", meeting_id)
        try:
            outcome = await self._run(meeting_id)
        except Exception as exc:
            logger.exception("Post-call analysis failed for meeting %s", meeting_id)
            error = str(exc) or type(exc).__name__
            try:
                await self._store.fail_meeting(meeting_id, error)
            except Exception:
                logger.exception("Failed to mark meeting %s as failed", meeting_id)
            return PipelineOutcome(meeting_id, MeetingStatus.failed, error=error)

        logger.info("Completed analysis for meeting %s", meeting_id)
        return outcome

    async def _run(self, meeting_id: str) -> PipelineOutcome:
        async def load_meeting() -> Meeting:
            meeting = await self._store.get_meeting_with_agent(meeting_id)
            if meeting is None:
                raise MeetingNotFoundError(meeting_id)
            return meeting

        meeting = await self._with_store_retry(load_meeting, f"load meeting {meeting_id}")
        chunks = await self._with_store_retry(
            lambda: self._collector.get_transcript(meeting_id),
            f"load transcript {meeting_id}",
        )
        if not chunks:
            logger.warning("No transcript found for meeting %s, proceeding anyway", meeting_id)

        agent_name = meeting.agent.name if meeting.agent else "Agent"
        transcript = format_for_analysis(chunks, agent_name)

        blueprint = _blueprint_of(meeting)
        if blueprint is None:
            return await self._summarize(meeting, transcript)
        return await self._analyze_progress(meeting, blueprint, transcript)

    async def _analyze_progress(
        self, meeting: Meeting, blueprint: Blueprint, transcript: str
    ) -> PipelineOutcome:
        prior = [SessionProgress.model_validate(p) for p in meeting.progress or []]
        analyzer_input = AnalyzerInput(
            blueprint_sessions=blueprint.sessions,
            current_progress=prior,
            transcript=transcript,
            prompt_context=determine_prompt_type(prior, blueprint.sessions),
        )
        logger.info(
            "Meeting %s prompt type: %s",
            meeting.id,
            analyzer_input.prompt_context.prompt_type,
        )

        analysis = await self._with_llm_retry(
            lambda: self._analyzer.analyze(analyzer_input), f"analyze meeting {meeting.id}"
        )
        progress = reconcile_progress(analysis.updated_progress, blueprint.sessions, prior)

        completed = await self._with_store_retry(
            lambda: self._store.complete_meeting(meeting.id, analysis.progress_summary, progress),
            f"complete meeting {meeting.id}",
        )
        if not completed:
            logger.warning(
                "Meeting %s was no longer processing, skipping next session", meeting.id
            )
            return PipelineOutcome(meeting.id, MeetingStatus.completed)

        next_session = find_next_session(progress, blueprint.sessions)
        if next_session is None:
            logger.info("Curriculum finished for agent %s", meeting.agent_id)
            return PipelineOutcome(meeting.id, MeetingStatus.completed)

        # Fixed id so a retried insert cannot create two meetings.
        next_id = uuid.uuid4().hex
        await self._with_store_retry(
            lambda: self._create_next_meeting(
                next_id,
                meeting,
                next_session.session_name,
                analysis.next_session_prompt,
                progress,
            ),
            f"create next meeting for {meeting.id}",
        )
        logger.info("Created next meeting %s for session: %s", next_id, next_session.session_name)
        return PipelineOutcome(meeting.id, MeetingStatus.completed, next_meeting_id=next_id)

    async def _create_next_meeting(
        self,
        next_id: str,
        meeting: Meeting,
        name: str,
        prompt: str,
        progress: list[SessionProgress],
    ) -> None:
        if await self._store.get_meeting(next_id) is not None:
            return
        await self._store.create_meeting(
            meeting_id=next_id,
            name=name,
            user_id=meeting.user_id,
            agent_id=meeting.agent_id,
            prompt=prompt,
            progress=progress,
        )

    async def _summarize(self, meeting: Meeting, transcript: str) -> PipelineOutcome:
        async def summarize() -> str | None:
            return await self._claude.complete(
                _SUMMARY_SYSTEM_PROMPT,
                [{"role": "user", "content": f"Summarize this transcript: {transcript}"}],
                raise_errors=True,
            )

        summary = await self._with_llm_retry(summarize, f"summarize meeting {meeting.id}")
        await self._with_store_retry(
            lambda: self._store.complete_meeting(
                meeting.id, summary or "Summary generation failed"
            ),
            f"complete meeting {meeting.id}",
        )
        return PipelineOutcome(meeting.id, MeetingStatus.completed)
