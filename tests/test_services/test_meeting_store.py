import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from app.models import Meeting, MeetingStatus
from app.schemas.curriculum import Blueprint, SessionProgress, SessionStatus
from tests.helpers import VALID_PROMPT, make_blueprint


async def _enroll(store):
    return await store.create_agent_from_blueprint("user-1", "Coach", make_blueprint())


async def test_enrollment_snapshots_blueprint_and_schedules_first_session(store):
    agent, meeting = await _enroll(store)

    assert agent.blueprint_snapshot["sessions"][0]["session_id"] == "S1"
    assert meeting.status == MeetingStatus.upcoming
    assert meeting.name == "Session 1"
    assert meeting.prompt == VALID_PROMPT
    assert meeting.meeting_data["blueprintId"] == "bp-1"

    loaded = await store.get_meeting_with_agent(meeting.id)
    assert loaded.agent.id == agent.id
    assert loaded.agent.name == "Coach"


async def test_enrollment_requires_sessions(store):
    with pytest.raises(ValueError):
        await store.create_agent_from_blueprint("user-1", "Coach", Blueprint(id="empty"))


async def test_lifecycle_transitions(store):
    _, meeting = await _enroll(store)

    assert await store.start_meeting(meeting.id) is True
    assert await store.begin_processing(meeting.id) is True
    progress = [
        SessionProgress(session_id="S1", session_name="Session 1", session_status=SessionStatus.completed)
    ]
    assert await store.complete_meeting(meeting.id, "Went well", progress) is True

    stored = await store.get_meeting(meeting.id)
    assert stored.status == MeetingStatus.completed
    assert stored.summary == "Went well"
    assert stored.progress[0]["session_status"] == "completed"
    assert stored.started_at is not None
    assert stored.ended_at is not None
    assert stored.processing_started_at is not None


async def test_start_is_guarded(store):
    _, meeting = await _enroll(store)

    assert await store.start_meeting(meeting.id) is True
    assert await store.start_meeting(meeting.id) is False

    await store.begin_processing(meeting.id)
    assert await store.start_meeting(meeting.id) is False
    assert (await store.get_meeting(meeting.id)).status == MeetingStatus.processing


async def test_concurrent_starts_move_exactly_once(store):
    _, meeting = await _enroll(store)

    results = await asyncio.gather(*(store.start_meeting(meeting.id) for _ in range(5)))

    assert results.count(True) == 1


async def test_begin_processing_requires_active(store):
    _, meeting = await _enroll(store)

    assert await store.begin_processing(meeting.id) is False
    assert (await store.get_meeting(meeting.id)).status == MeetingStatus.upcoming


async def test_terminal_writes_require_processing(store):
    _, meeting = await _enroll(store)
    await store.start_meeting(meeting.id)

    assert await store.complete_meeting(meeting.id, "too early") is False
    assert await store.fail_meeting(meeting.id, "too early") is False

    await store.begin_processing(meeting.id)
    assert await store.fail_meeting(meeting.id, "LLM down") is True
    assert await store.complete_meeting(meeting.id, "too late") is False

    stored = await store.get_meeting(meeting.id)
    assert stored.status == MeetingStatus.failed
    assert stored.error == "LLM down"


async def test_cancel_only_from_upcoming_or_active(store):
    _, meeting = await _enroll(store)
    assert await store.cancel_meeting(meeting.id) is True
    assert await store.start_meeting(meeting.id) is False

    _, other = await _enroll(store)
    await store.start_meeting(other.id)
    await store.begin_processing(other.id)
    assert await store.cancel_meeting(other.id) is False


async def test_artifact_urls(store):
    _, meeting = await _enroll(store)

    assert await store.set_transcript_url(meeting.id, "https://cdn/t.jsonl") is True
    assert await store.set_recording_url(meeting.id, "https://cdn/r.mp4") is True
    assert await store.set_recording_url("missing", "https://cdn/r.mp4") is False

    stored = await store.get_meeting(meeting.id)
    assert stored.transcript_url == "https://cdn/t.jsonl"
    assert stored.recording_url == "https://cdn/r.mp4"


async def test_list_stale_processing(store, session_factory):
    _, old = await _enroll(store)
    _, fresh = await _enroll(store)
    for meeting in (old, fresh):
        await store.start_meeting(meeting.id)
        await store.begin_processing(meeting.id)

    long_ago = datetime.now(timezone.utc) - timedelta(hours=1)
    async with session_factory() as session:
        await session.execute(
            update(Meeting).where(Meeting.id == old.id).values(processing_started_at=long_ago)
        )
        await session.commit()

    stale = await store.list_stale_processing(timedelta(minutes=15))

    assert [m.id for m in stale] == [old.id]


async def test_create_meeting_with_explicit_id(store):
    agent, _ = await _enroll(store)

    meeting = await store.create_meeting(
        meeting_id="fixed-id",
        name="Session 2",
        user_id="user-1",
        agent_id=agent.id,
        prompt=VALID_PROMPT,
    )

    assert meeting.id == "fixed-id"
    assert (await store.get_meeting("fixed-id")).status == MeetingStatus.upcoming
    assert await store.get_agent(agent.id) is not None
    assert await store.get_agent("missing") is None
