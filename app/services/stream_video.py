import logging

import httpx
from websockets.asyncio.client import connect

from app.exceptions.custom import RateLimitError, StreamError
from app.services.realtime import RealtimeClient
from app.services.stream_auth import StreamCredentials

logger = logging.getLogger(__name__)

VIDEO_URL = "https://video.stream-io-api.com/api/v2/video/call"
REALTIME_URL = "wss://video.stream-io-api.com/video/connect_agent"
CALL_TYPE = "default"


class StreamVideoService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: StreamCredentials,
        openai_api_key: str = "",
    ):
        self._client = client
        self._credentials = credentials
        self._openai_api_key = openai_api_key

    async def end_call(self, call_id: str) -> None:
        url = f"{VIDEO_URL}/{CALL_TYPE}/{call_id}/mark_ended"
        resp = await self._client.post(
            url,
            params={"api_key": self._credentials.api_key},
            json={},
            headers=self._credentials.server_headers(),
        )

        if resp.status_code == 429:
            raise RateLimitError("Stream")
        if resp.status_code >= 400:
            raise StreamError(resp.text, status_code=resp.status_code)

        logger.info("Ended call %s", call_id)

    async def connect_openai(self, call_id: str, agent_user_id: str) -> RealtimeClient:
        """Bridge a realtime voice agent into the call as ``agent_user_id``."""
        if not self._openai_api_key:
            raise StreamError("OpenAI API key is not configured")

        params = httpx.QueryParams(
            {
                "call_type": CALL_TYPE,
                "call_id": call_id,
                "api_key": self._credentials.api_key,
            }
        )
        headers = {
            "Authorization": self._credentials.user_token(agent_user_id),
            "stream-auth-type": "jwt",
            "x-openai-api-key": self._openai_api_key,
        }
        logger.info("Connecting agent %s to call %s", agent_user_id, call_id)
        try:
            connection = await connect(f"{REALTIME_URL}?{params}", additional_headers=headers)
        except Exception as exc:
            raise StreamError(f"Failed to connect agent to call {call_id}: {exc}") from exc
        return RealtimeClient(connection, call_id)
