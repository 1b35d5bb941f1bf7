import asyncio
from unittest.mock import patch

from sqlalchemy import select

from app.models import Meeting, SpeakerType, TranscriptChunk
from app.services.transcript_collector import TranscriptCollector
from tests.helpers import make_blueprint


async def _meeting(store) -> str:
    _, meeting = await store.create_agent_from_blueprint("user-1", "Coach", make_blueprint())
    return meeting.id


async def test_sequence_numbers_start_at_one_and_increase(store, collector):
    meeting_id = await _meeting(store)

    seqs = [
        await collector.store_chunk(meeting_id, SpeakerType.user, "hi"),
        await collector.store_chunk(meeting_id, SpeakerType.agent, "hello"),
        await collector.store_chunk(meeting_id, SpeakerType.user, "how are you"),
    ]

    assert seqs == [1, 2, 3]
    chunks = await collector.get_transcript(meeting_id)
    assert [c.sequence_number for c in chunks] == [1, 2, 3]
    assert [c.speaker_type for c in chunks] == ["user", "agent", "user"]
    assert [c.text for c in chunks] == ["hi", "hello", "how are you"]


async def test_concurrent_writes_get_unique_gapless_sequences(store, collector):
    meeting_id = await _meeting(store)

    seqs = await asyncio.gather(
        *(collector.store_chunk(meeting_id, SpeakerType.user, f"chunk {i}") for i in range(10))
    )

    assert sorted(seqs) == list(range(1, 11))
    chunks = await collector.get_transcript(meeting_id)
    assert [c.sequence_number for c in chunks] == list(range(1, 11))


async def test_counters_are_independent_per_meeting(store, collector):
    first = await _meeting(store)
    second = await _meeting(store)

    await collector.store_chunk(first, SpeakerType.user, "a")
    await collector.store_chunk(first, SpeakerType.user, "b")
    assert await collector.store_chunk(second, SpeakerType.user, "c") == 1


async def test_counter_continues_from_stored_chunks(store, session_factory):
    meeting_id = await _meeting(store)
    before = TranscriptCollector(session_factory)
    await before.store_chunk(meeting_id, SpeakerType.user, "one")
    await before.store_chunk(meeting_id, SpeakerType.agent, "two")

    # A fresh collector, as after a restart mid-call
    after = TranscriptCollector(session_factory)
    assert await after.store_chunk(meeting_id, SpeakerType.user, "three") == 3


async def test_failed_sequence_read_is_retried_on_next_chunk(store, session_factory):
    meeting_id = await _meeting(store)
    before = TranscriptCollector(session_factory)
    await before.store_chunk(meeting_id, SpeakerType.user, "one")
    await before.store_chunk(meeting_id, SpeakerType.agent, "two")

    after = TranscriptCollector(session_factory)
    calls = []

    def flaky_sessions():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("db blip")
        return session_factory()

    with patch.object(after, "_sessions", side_effect=flaky_sessions):
        # Unseeded guess collides with a stored chunk and is dropped
        assert await after.store_chunk(meeting_id, SpeakerType.user, "lost") == 1
        assert await after.store_chunk(meeting_id, SpeakerType.user, "three") == 3

    chunks = await after.get_transcript(meeting_id)
    assert [(c.sequence_number, c.text) for c in chunks] == [(1, "one"), (2, "two"), (3, "three")]


async def test_subscriber_receives_published_entries(store, collector):
    meeting_id = await _meeting(store)
    received = []
    collector.subscribe(meeting_id, received.append)

    await collector.store_chunk(meeting_id, SpeakerType.agent, "Welcome back")

    assert len(received) == 1
    entry = received[0]
    assert entry.id == f"{meeting_id}-1"
    assert entry.speaker == "assistant"
    assert entry.text == "Welcome back"
    assert isinstance(entry.timestamp, int)


async def test_failing_subscriber_does_not_affect_others(store, collector):
    meeting_id = await _meeting(store)
    received = []

    def broken(_entry):
        raise RuntimeError("client went away")

    collector.subscribe(meeting_id, broken)
    collector.subscribe(meeting_id, received.append)

    assert await collector.store_chunk(meeting_id, SpeakerType.user, "hi") == 1
    assert len(received) == 1


async def test_publishes_even_when_persistence_fails(collector):
    received = []
    collector.subscribe("M1", received.append)

    with patch.object(collector, "_sessions", side_effect=RuntimeError("db down")):
        seq = await collector.store_chunk("M1", SpeakerType.user, "still live")

    assert seq == 1
    assert [e.text for e in received] == ["still live"]


async def test_unsubscribe_is_idempotent(collector):
    token = collector.subscribe("M1", lambda _e: None)
    assert collector.subscriber_count("M1") == 1

    assert collector.unsubscribe("M1", token) is True
    assert collector.unsubscribe("M1", token) is False
    assert collector.unsubscribe("unknown", 999) is False
    assert collector.subscriber_count("M1") == 0


async def test_get_transcript_unknown_meeting_is_empty(collector):
    assert await collector.get_transcript("nope") == []


async def test_get_transcript_swallows_store_errors(collector):
    with patch.object(collector, "_sessions", side_effect=RuntimeError("db down")):
        assert await collector.get_transcript("M1") == []


async def test_mark_transcript_collected(store, collector, session_factory):
    meeting_id = await _meeting(store)

    await collector.mark_transcript_collected(meeting_id)

    async with session_factory() as session:
        meeting = await session.get(Meeting, meeting_id)
    assert meeting.transcript_collected is True


async def test_cleanup_drops_subscribers_and_counter(store, collector, session_factory):
    meeting_id = await _meeting(store)
    await collector.store_chunk(meeting_id, SpeakerType.user, "one")
    collector.subscribe(meeting_id, lambda _e: None)

    collector.cleanup(meeting_id)

    assert collector.subscriber_count(meeting_id) == 0
    # Counter is re-seeded from the stored chunks, so numbering still continues
    assert await collector.store_chunk(meeting_id, SpeakerType.user, "two") == 2
    async with session_factory() as session:
        result = await session.execute(
            select(TranscriptChunk.sequence_number).where(TranscriptChunk.meeting_id == meeting_id)
        )
        assert sorted(result.scalars()) == [1, 2]
