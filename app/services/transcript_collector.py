import asyncio
import itertools
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.mappers.transcript_formatter import client_speaker, epoch_millis
from app.models import Meeting, SpeakerType, TranscriptChunk
from app.schemas.responses import TranscriptEntry

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[TranscriptEntry], None]


class TranscriptCollector:
    """Ordered, append-only transcript per meeting with live fan-out.

    Sequence numbers are assigned here, under a per-meeting lock, in the
    order ``store_chunk`` is called. Persistence failures are logged and
    swallowed so a transcript write can never break a live call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory
        self._counters: dict[str, int] = {}
        self._seeded: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._subscribers: dict[str, dict[int, TranscriptCallback]] = {}
        self._tokens = itertools.count(1)

    def _lock(self, meeting_id: str) -> asyncio.Lock:
        lock = self._locks.get(meeting_id)
        if lock is None:
            lock = self._locks[meeting_id] = asyncio.Lock()
        return lock

    async def _stored_max_sequence(self, meeting_id: str) -> int | None:
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    select(func.max(TranscriptChunk.sequence_number)).where(
                        TranscriptChunk.meeting_id == meeting_id
                    )
                )
                return result.scalar() or 0
        except Exception:
            logger.exception("Failed to read last sequence number for meeting %s", meeting_id)
            return None

    async def _next_sequence(self, meeting_id: str) -> int:
        current = self._counters.get(meeting_id, 0)
        # Until the stored maximum has been read, every chunk retries the read.
        if meeting_id not in self._seeded:
            stored = await self._stored_max_sequence(meeting_id)
            if stored is not None:
                current = max(current, stored)
                self._seeded.add(meeting_id)
        self._counters[meeting_id] = current + 1
        return current + 1

    async def store_chunk(
        self, meeting_id: str, speaker_type: SpeakerType, text: str
    ) -> int:
        async with self._lock(meeting_id):
            sequence_number = await self._next_sequence(meeting_id)
            timestamp = datetime.now(timezone.utc)
            try:
                async with self._sessions() as session:
                    session.add(
                        TranscriptChunk(
                            meeting_id=meeting_id,
                            speaker_type=speaker_type.value,
                            text=text,
                            timestamp=timestamp,
                            sequence_number=sequence_number,
                        )
                    )
                    await session.commit()
                logger.info(
                    "Stored %s chunk %d for meeting %s",
                    speaker_type.value,
                    sequence_number,
                    meeting_id,
                )
            except Exception:
                logger.exception("Failed to store transcript chunk for meeting %s", meeting_id)

            self._publish(
                meeting_id,
                TranscriptEntry(
                    id=f"{meeting_id}-{sequence_number}",
                    speaker=client_speaker(speaker_type),
                    text=text,
                    timestamp=epoch_millis(timestamp),
                ),
            )
        return sequence_number

    def _publish(self, meeting_id: str, entry: TranscriptEntry) -> None:
        for token, callback in list(self._subscribers.get(meeting_id, {}).items()):
            try:
                callback(entry)
            except Exception:
                logger.exception("Transcript subscriber %d for meeting %s failed", token, meeting_id)

    async def get_transcript(self, meeting_id: str) -> list[TranscriptChunk]:
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    select(TranscriptChunk)
                    .where(TranscriptChunk.meeting_id == meeting_id)
                    .order_by(TranscriptChunk.sequence_number)
                )
                return list(result.scalars())
        except Exception:
            logger.exception("Failed to retrieve transcript for meeting %s", meeting_id)
            return []

    async def mark_transcript_collected(self, meeting_id: str) -> None:
        try:
            async with self._sessions() as session:
                await session.execute(
                    update(Meeting)
                    .where(Meeting.id == meeting_id)
                    .values(transcript_collected=True)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception:
            logger.exception("Failed to mark transcript collected for meeting %s", meeting_id)

    def subscribe(self, meeting_id: str, callback: TranscriptCallback) -> int:
        token = next(self._tokens)
        self._subscribers.setdefault(meeting_id, {})[token] = callback
        return token

    def unsubscribe(self, meeting_id: str, token: int) -> bool:
        subscribers = self._subscribers.get(meeting_id)
        if not subscribers or token not in subscribers:
            return False
        del subscribers[token]
        if not subscribers:
            del self._subscribers[meeting_id]
        return True

    def subscriber_count(self, meeting_id: str) -> int:
        return len(self._subscribers.get(meeting_id, {}))

    def cleanup(self, meeting_id: str) -> None:
        self._counters.pop(meeting_id, None)
        self._seeded.discard(meeting_id)
        self._subscribers.pop(meeting_id, None)
        lock = self._locks.get(meeting_id)
        if lock is not None and not lock.locked():
            del self._locks[meeting_id]
