import logging

import httpx

from app.exceptions.custom import RateLimitError, StreamError
from app.schemas.stream import ChatMessage
from app.services.stream_auth import StreamCredentials

logger = logging.getLogger(__name__)

CHAT_URL = "https://chat.stream-io-api.com"
CHANNEL_TYPE = "messaging"


class StreamChatService:
    def __init__(self, client: httpx.AsyncClient, credentials: StreamCredentials):
        self._client = client
        self._credentials = credentials

    async def _post(self, path: str, payload: dict) -> dict:
        resp = await self._client.post(
            f"{CHAT_URL}{path}",
            params={"api_key": self._credentials.api_key},
            json=payload,
            headers=self._credentials.server_headers(),
        )

        if resp.status_code == 429:
            raise RateLimitError("Stream Chat")
        if resp.status_code >= 400:
            raise StreamError(resp.text, status_code=resp.status_code)

        return resp.json()

    async def get_recent_messages(self, channel_id: str, limit: int = 5) -> list[ChatMessage]:
        data = await self._post(
            f"/channels/{CHANNEL_TYPE}/{channel_id}/query",
            {"state": True, "messages": {"limit": limit}},
        )
        messages = [ChatMessage(**m) for m in data.get("messages", [])]
        return messages[-limit:]

    async def upsert_user(self, user_id: str, name: str, image: str | None = None) -> None:
        user: dict = {"id": user_id, "name": name}
        if image:
            user["image"] = image
        await self._post("/users", {"users": {user_id: user}})

    async def send_message(self, channel_id: str, user_id: str, text: str) -> None:
        await self._post(
            f"/channels/{CHANNEL_TYPE}/{channel_id}/message",
            {"message": {"text": text, "user_id": user_id}},
        )
        logger.info("Sent chat message to channel %s as %s", channel_id, user_id)
