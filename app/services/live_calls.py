import asyncio
import logging
from dataclasses import dataclass, field

from app.services.conversation_state import ConversationStateTracker
from app.services.realtime import RealtimeClient

logger = logging.getLogger(__name__)


@dataclass
class LiveCall:
    meeting_id: str
    tracker: ConversationStateTracker = field(default_factory=ConversationStateTracker)
    realtime: RealtimeClient | None = None
    listener: asyncio.Task | None = None


class LiveCallRegistry:
    """Per-meeting state of calls in progress, held in process memory only.

    Entries are created on session start and removed on session end.
    """

    def __init__(self) -> None:
        self._calls: dict[str, LiveCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def open(self, meeting_id: str) -> LiveCall:
        existing = self._calls.get(meeting_id)
        if existing is not None:
            logger.warning("Live call for meeting %s already open, reusing it", meeting_id)
            return existing
        call = LiveCall(meeting_id=meeting_id)
        self._calls[meeting_id] = call
        return call

    def get(self, meeting_id: str) -> LiveCall | None:
        return self._calls.get(meeting_id)

    async def close(self, meeting_id: str) -> None:
        call = self._calls.pop(meeting_id, None)
        if call is None:
            return
        if call.realtime is not None:
            try:
                await call.realtime.close()
            except Exception:
                logger.exception("Failed to close realtime bridge for meeting %s", meeting_id)
        if call.listener is not None and not call.listener.done():
            call.listener.cancel()
        logger.info("Closed live call for meeting %s", meeting_id)

    async def close_all(self) -> None:
        for meeting_id in list(self._calls):
            await self.close(meeting_id)
