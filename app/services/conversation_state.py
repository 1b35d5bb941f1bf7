import time
from enum import StrEnum

from app.schemas.realtime import TelemetryEvent
from app.schemas.responses import ConversationStateSnapshot


class AgentState(StrEnum):
    listening = "listening"
    user_speaking = "user_speaking"
    agent_thinking = "agent_thinking"
    agent_speaking = "agent_speaking"


_TRANSITIONS: dict[TelemetryEvent, AgentState] = {
    TelemetryEvent.speech_started: AgentState.user_speaking,
    TelemetryEvent.speech_stopped: AgentState.agent_thinking,
    TelemetryEvent.response_created: AgentState.agent_thinking,
    TelemetryEvent.audio_delta: AgentState.agent_speaking,
    TelemetryEvent.function_call_delta: AgentState.agent_thinking,
    TelemetryEvent.response_done: AgentState.listening,
    TelemetryEvent.session_updated: AgentState.listening,
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConversationStateTracker:
    """Who is talking right now, derived from realtime telemetry names."""

    def __init__(self) -> None:
        self._state = AgentState.listening
        self._current_speaker: str | None = None
        self._is_responding = False
        self._turn_count = 0
        self._last_event_at = _now_ms()

    def handle_event(self, event_name: str) -> AgentState | None:
        try:
            event = TelemetryEvent(event_name)
        except ValueError:
            return None

        self._state = _TRANSITIONS[event]
        if event is TelemetryEvent.speech_started:
            self._current_speaker = "user"
        elif event is TelemetryEvent.audio_delta:
            self._current_speaker = "agent"
        elif event is TelemetryEvent.response_created:
            self._is_responding = True
        elif event is TelemetryEvent.response_done:
            self._is_responding = False
            self._turn_count += 1

        self._last_event_at = _now_ms()
        return self._state

    def get_state(self) -> ConversationStateSnapshot:
        return ConversationStateSnapshot(
            state=self._state.value,
            current_speaker=self._current_speaker,
            is_responding=self._is_responding,
            turn_count=self._turn_count,
            last_event_at=self._last_event_at,
        )
