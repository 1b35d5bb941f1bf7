import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import respx
from httpx import Response

from app.models import MeetingStatus
from app.services.claude import ClaudeService
from app.services.stream_video import VIDEO_URL
from tests.helpers import STREAM_API_KEY, VALID_PROMPT, encode, make_blueprint, sign, webhook_headers


@pytest.fixture
def state(client):
    from app.main import app

    return app.state


def _call_payload(event_type: str, meeting_id: str, **extra) -> dict:
    return {
        "type": event_type,
        "call_cid": f"default:{meeting_id}",
        "call": {"id": meeting_id, "cid": f"default:{meeting_id}", "custom": {"meetingId": meeting_id}},
        **extra,
    }


async def _post(client, payload: dict, path: str = "/api/webhook"):
    body = encode(payload)
    return await client.post(path, content=body, headers=webhook_headers(body))


def _fake_socket():
    socket = MagicMock()
    socket.send = AsyncMock()
    socket.close = AsyncMock()
    socket.__aiter__.return_value = []
    return socket


# --- authentication and parsing ---


async def test_missing_signature_is_unauthorized(client):
    body = encode({"type": "call.session_started"})
    resp = await client.post("/api/webhook", content=body, headers={"x-api-key": STREAM_API_KEY})
    assert resp.status_code == 401


async def test_bad_signature_is_unauthorized(client):
    body = encode({"type": "call.session_started"})
    resp = await client.post(
        "/api/webhook",
        content=body,
        headers={"x-signature": sign(b"something else"), "x-api-key": STREAM_API_KEY},
    )
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Invalid signature"}


async def test_wrong_api_key_is_unauthorized(client):
    body = encode({"type": "call.session_started"})
    resp = await client.post(
        "/api/webhook", content=body, headers={"x-signature": sign(body), "x-api-key": "other"}
    )
    assert resp.status_code == 401


async def test_invalid_json_is_bad_request(client):
    body = b"{not json"
    resp = await client.post("/api/webhook", content=body, headers=webhook_headers(body))
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Invalid JSON"}


async def test_unknown_event_type_is_acknowledged(client):
    resp = await _post(client, {"type": "call.member_added"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


async def test_known_event_with_bad_shape_is_bad_request(client):
    resp = await _post(client, {"type": "call.transcription_ready", "call_cid": "default:M1"})
    assert resp.status_code == 400


async def test_missing_meeting_id_is_bad_request(client):
    resp = await _post(client, {"type": "call.session_started", "call": {"custom": {}}})
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Missing meetingId"}


async def test_plural_path_is_accepted(client):
    resp = await _post(client, {"type": "call.member_added"}, path="/api/webhooks")
    assert resp.status_code == 200


# --- event handling ---


async def test_session_started_unknown_meeting_is_not_found(client):
    resp = await _post(client, _call_payload("call.session_started", "missing"))
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Meeting not found"}


async def test_session_started_with_invalid_prompt_is_server_error(client, state):
    agent, _ = await state.meeting_store.create_agent_from_blueprint(
        "user-1", "Coach", make_blueprint()
    )
    bad = await state.meeting_store.create_meeting(
        name="Broken", user_id="user-1", agent_id=agent.id, prompt="No states here"
    )

    with respx.mock:
        end_call = respx.post(f"{VIDEO_URL}/default/{bad.id}/mark_ended").mock(
            return_value=Response(201, json={})
        )
        resp = await _post(client, _call_payload("call.session_started", bad.id))

    assert resp.status_code == 500
    assert end_call.called


async def test_session_ended_for_upcoming_meeting_is_a_no_op(client, state):
    _, meeting = await state.meeting_store.create_agent_from_blueprint(
        "user-1", "Coach", make_blueprint()
    )

    resp = await _post(client, _call_payload("call.session_ended", meeting.id))

    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"
    assert (await state.meeting_store.get_meeting(meeting.id)).status == MeetingStatus.upcoming
    assert state.supervisor.get_job(meeting.id) is None


async def test_unexpected_failure_is_internal_error(client, state):
    with patch.object(
        state.meeting_store, "get_meeting", new_callable=AsyncMock, side_effect=RuntimeError("db gone")
    ):
        resp = await _post(client, _call_payload("call.session_started", "M1"))
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Internal error"}


async def test_full_call_lifecycle(client, state):
    agent, meeting = await state.meeting_store.create_agent_from_blueprint(
        "user-1", "Coach", make_blueprint()
    )
    socket = _fake_socket()
    analysis = {
        "progressSummary": "Completed the first session.",
        "updatedProgress": [
            {
                "session_id": "S1",
                "session_name": "Session 1",
                "session_status": "completed",
                "criteria_met": ["S1-a", "S1-b"],
                "criteria_pending": [],
            }
        ],
        "nextSessionPrompt": VALID_PROMPT,
    }

    with patch("app.services.stream_video.connect", new_callable=AsyncMock, return_value=socket):
        resp = await _post(client, _call_payload("call.session_started", meeting.id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"

    sent = json.loads(socket.send.await_args.args[0])
    assert sent["type"] == "session.update"
    assert sent["session"]["instructions"] == VALID_PROMPT

    live = state.live_calls.get(meeting.id)
    await state.webhook_router.handle_realtime_event(
        meeting.id,
        live.tracker,
        {"type": "conversation.item.input_audio_transcription.completed", "transcript": "Hi!"},
    )

    state_resp = await client.get(f"/api/meetings/{meeting.id}/state")
    assert state_resp.status_code == 200

    with patch.object(ClaudeService, "analyze", new_callable=AsyncMock, return_value=analysis):
        resp = await _post(client, _call_payload("call.session_ended", meeting.id))
        assert resp.status_code == 200
        await state.supervisor.drain()

    status = (await client.get(f"/api/meetings/{meeting.id}/status")).json()
    assert status["status"] == "completed"

    job = (await client.get(f"/api/meetings/{meeting.id}/analysis")).json()
    assert job["status"] == "completed"
    next_meeting = await state.meeting_store.get_meeting(job["next_meeting_id"])
    assert next_meeting.name == "Session 2"
    assert next_meeting.agent_id == agent.id
    assert next_meeting.status == MeetingStatus.upcoming

    transcripts = (await client.get(f"/api/meetings/{meeting.id}/transcripts")).json()["transcripts"]
    assert [t["text"] for t in transcripts] == ["Hi!"]
    assert (await client.get(f"/api/meetings/{meeting.id}/state")).status_code == 404
