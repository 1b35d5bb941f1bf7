import json
import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from app.exceptions.custom import AnalysisError
from app.schemas.curriculum import (
    AnalyzerInput,
    AnalyzerOutput,
    ParticipantContext,
    PromptGenerationContext,
    PromptType,
    Session,
    SessionProgress,
    SessionStatus,
)
from app.services.claude import ClaudeService

logger = logging.getLogger(__name__)

# Markers every live-agent prompt must carry.
PERSONALITY_MARKER = "PERSONALITY AND TONE"
GUIDELINES_MARKER = "SESSION GUIDELINES"
STATES_MARKER = "CONVERSATION STATES"
PROMPT_SECTIONS = (PERSONALITY_MARKER, GUIDELINES_MARKER, STATES_MARKER)

_STATUS_RANK = {
    SessionStatus.pending: 0,
    SessionStatus.in_progress: 1,
    SessionStatus.completed: 2,
}

_SYSTEM_PROMPT = """You are an expert at analyzing coaching curricula, progress tracking and conversation transcripts to generate prompts for voice agents in a coaching program. You receive three inputs and produce three outputs: a progress summary, updated progress tracking, and the prompt for the next session.

### Key concepts
- Blueprint: the ordered list of sessions. Each session has completion criteria and a full agent prompt with a PERSONALITY AND TONE section, a SESSION GUIDELINES section and a CONVERSATION STATES array.
- Progress: one record per session the participant has encountered, with session_status (pending -> in_progress -> completed), criteria_met, criteria_pending, completion_notes, participant_specific_notes and date_completed.
- Transcript: what the coach and the participant actually said in the call that just ended.

### Analysis process
1. Read the blueprint, the current progress and the transcript.
2. Find transcript evidence for each completion criterion of the session being worked on.
3. Decide whether that session is completed or continues.
4. Capture participant insights: communication style, motivations, strengths, concerns, personal context.
5. Write the outputs, keeping continuity with earlier sessions.

### Progress rules
- criteria_met and criteria_pending use the exact criterion text from the blueprint; together they cover every criterion of the session and never overlap.
- A session status never moves backwards.
- date_completed is "YYYY-MM-DD" and only present when the session is completed.

### Prompt rules
- Keep the three sections: PERSONALITY AND TONE, SESSION GUIDELINES, CONVERSATION STATES.
- Personalize examples with the participant's own goals and words.
- The opening state must reconnect to previous work.
- Each conversation state has id, description, instructions (array), examples (array) and transitions (array of next_step and condition). Generate 4-8 states mapping to the completion criteria: opening, core exploration, practice, commitment.

Respond ONLY with a JSON object with the keys "progressSummary" (string), "updatedProgress" (array) and "nextSessionPrompt" (string). No markdown, no extra text."""

_DIRECTIVES = {
    PromptType.continuation: (
        "Generate a CONTINUATION prompt for the session \"{name}\" ({session_id}): "
        "reconnect to where the participant left off and focus only on its pending criteria."
    ),
    PromptType.advancement: (
        "Generate an ADVANCEMENT prompt for the session \"{name}\" ({session_id}): "
        "use its blueprint prompt as the base and bridge from previous achievements."
    ),
    PromptType.adaptive: (
        "Generate an ADAPTIVE prompt: {reason}. Address the participant's needs "
        "while preserving the program's goals."
    ),
}


def _progress_by_id(progress: list[SessionProgress]) -> dict[str, SessionProgress]:
    return {p.session_id: p for p in progress}


def _participant_context(progress: list[SessionProgress]) -> ParticipantContext:
    notes = " ".join(p.participant_specific_notes for p in progress if p.participant_specific_notes)
    return ParticipantContext(personal_context=notes)


def determine_prompt_type(
    current_progress: list[SessionProgress], sessions: list[Session]
) -> PromptGenerationContext:
    """Decide which kind of prompt the next session needs, in blueprint order."""
    by_id = _progress_by_id(current_progress)
    context = _participant_context(current_progress)

    current = next(
        (
            by_id[s.session_id]
            for s in sessions
            if s.session_id in by_id and by_id[s.session_id].session_status == SessionStatus.in_progress
        ),
        None,
    )

    if current is not None and current.criteria_pending:
        return PromptGenerationContext(
            prompt_type=PromptType.continuation,
            previous_session=current,
            participant_context=context,
        )

    upcoming = next(
        (
            s
            for s in sessions
            if (current is None or s.session_id != current.session_id)
            and (s.session_id not in by_id or by_id[s.session_id].session_status == SessionStatus.pending)
        ),
        None,
    )
    if upcoming is not None:
        return PromptGenerationContext(
            prompt_type=PromptType.advancement,
            previous_session=current,
            next_session=upcoming,
            participant_context=context,
        )

    return PromptGenerationContext(
        prompt_type=PromptType.adaptive,
        reason="All sessions completed - journey wrap-up",
        previous_session=current,
        participant_context=context,
    )


def find_next_session(progress: list[SessionProgress], sessions: list[Session]) -> Session | None:
    """First blueprint session whose progress is not completed, if any."""
    by_id = _progress_by_id(progress)
    for session in sessions:
        entry = by_id.get(session.session_id)
        if entry is None or entry.session_status != SessionStatus.completed:
            return session
    return None


def missing_prompt_sections(prompt: str) -> list[str]:
    return [marker for marker in PROMPT_SECTIONS if marker not in prompt]


def validate_analysis(raw: dict | None) -> AnalyzerOutput:
    if not raw:
        raise AnalysisError("Claude analysis returned no results")

    summary = raw.get("progressSummary")
    updated = raw.get("updatedProgress")
    next_prompt = raw.get("nextSessionPrompt")
    if next_prompt is not None and not isinstance(next_prompt, str):
        next_prompt = json.dumps(next_prompt, ensure_ascii=False)

    if not summary or updated is None or not next_prompt:
        logger.error(
            "Missing fields in analysis: summary=%s progress=%s prompt=%s keys=%s",
            bool(summary),
            updated is not None,
            bool(next_prompt),
            sorted(raw),
        )
        raise AnalysisError("Invalid response format from LLM - missing required fields")

    if not isinstance(updated, list):
        raise AnalysisError("updatedProgress must be an array")

    try:
        progress = [SessionProgress.model_validate(item) for item in updated]
    except ValidationError as exc:
        raise AnalysisError(f"Invalid progress item structure: {exc.errors()[0]['msg']}") from exc

    if not isinstance(summary, str):
        summary = json.dumps(summary, ensure_ascii=False)

    missing = missing_prompt_sections(next_prompt)
    if missing:
        logger.warning("Next session prompt missing sections %s, proceeding", missing)

    return AnalyzerOutput(
        progress_summary=summary,
        updated_progress=progress,
        next_session_prompt=next_prompt,
    )


def reconcile_progress(
    updated: list[SessionProgress],
    sessions: list[Session],
    prior: list[SessionProgress],
) -> list[SessionProgress]:
    """Hold model-produced progress to the curriculum's invariants.

    Criteria are partitioned against the blueprint, status never regresses
    from the prior record, and ``date_completed`` is set iff completed.
    """
    updated_by_id = _progress_by_id(updated)
    prior_by_id = _progress_by_id(prior)
    known = {s.session_id for s in sessions}
    for session_id in updated_by_id.keys() - known:
        logger.warning("Dropping progress for unknown session %s", session_id)

    today = datetime.now(timezone.utc).date().isoformat()
    result: list[SessionProgress] = []
    for session in sessions:
        entry = updated_by_id.get(session.session_id)
        before = prior_by_id.get(session.session_id)
        if entry is None:
            if before is not None:
                result.append(before)
            continue

        entry = entry.model_copy(deep=True)
        entry.session_name = session.session_name

        met = set(entry.criteria_met)
        if before is not None:
            met |= set(before.criteria_met)
        entry.criteria_met = [c for c in session.completion_criteria if c in met]
        entry.criteria_pending = [c for c in session.completion_criteria if c not in met]

        if before is not None and _STATUS_RANK[before.session_status] > _STATUS_RANK[entry.session_status]:
            logger.warning(
                "Session %s status would regress %s -> %s, keeping %s",
                session.session_id,
                before.session_status,
                entry.session_status,
                before.session_status,
            )
            entry.session_status = before.session_status

        if entry.session_status == SessionStatus.completed:
            entry.date_completed = entry.date_completed or (before.date_completed if before else None) or today
        else:
            entry.date_completed = None

        result.append(entry)
    return result


def build_user_prompt(analyzer_input: AnalyzerInput) -> str:
    sessions = [s.model_dump(mode="json") for s in analyzer_input.blueprint_sessions]
    progress = [p.model_dump(mode="json", exclude_none=True) for p in analyzer_input.current_progress]
    parts = [
        "Analyze the following conversation context and generate outputs as specified.",
        "",
        "### Conversation Blueprint:",
        "```json",
        json.dumps(sessions, indent=2, ensure_ascii=False),
        "```",
        "",
        "### Current Progress:",
        "```json",
        json.dumps(progress, indent=2, ensure_ascii=False),
        "```",
        "",
        "### Conversation Transcript:",
        "```",
        analyzer_input.transcript,
        "```",
    ]

    context = analyzer_input.prompt_context
    if context is not None:
        target = context.next_session or context.previous_session
        directive = _DIRECTIVES[context.prompt_type].format(
            name=target.session_name if target else "",
            session_id=target.session_id if target else "",
            reason=context.reason or "",
        )
        parts += [
            "",
            "### Prompt Directive:",
            f"Prompt type: {context.prompt_type.value.upper()}",
            directive,
        ]
        if context.prompt_type != PromptType.adaptive:
            parts.append(
                "If the transcript shows that session is now completed, target the next "
                "pending session instead, or write an ADAPTIVE wrap-up if none remains."
            )
        if context.participant_context.personal_context:
            parts.append(f"Known participant context: {context.participant_context.personal_context}")

    return "\n".join(parts)


class MeetingAnalyzer:
    def __init__(self, claude: ClaudeService):
        self._claude = claude

    async def analyze(self, analyzer_input: AnalyzerInput) -> AnalyzerOutput:
        logger.info(
            "Analysis input: sessions=%d progress=%d transcript_chars=%d",
            len(analyzer_input.blueprint_sessions),
            len(analyzer_input.current_progress),
            len(analyzer_input.transcript),
        )
        raw = await self._claude.analyze(
            _SYSTEM_PROMPT, build_user_prompt(analyzer_input), raise_errors=True
        )
        return validate_analysis(raw)
