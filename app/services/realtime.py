import json
import logging
from collections.abc import Awaitable, Callable

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)

RealtimeHandler = Callable[[dict], Awaitable[None]]


class RealtimeClient:
    """Event stream of the AI participant bridged into a call.

    Handlers run one at a time, in delivery order, for every event received.
    """

    def __init__(self, connection: ClientConnection, call_id: str):
        self._connection = connection
        self._call_id = call_id
        self._handlers: list[RealtimeHandler] = []

    def on_event(self, handler: RealtimeHandler) -> None:
        self._handlers.append(handler)

    async def update_session(self, **session) -> None:
        await self._connection.send(json.dumps({"type": "session.update", "session": session}))

    async def listen(self) -> None:
        try:
            async for raw in self._connection:
                try:
                    event = json.loads(raw)
                except (json.JSONDecodeError, TypeError):
                    logger.warning("Dropping non-JSON realtime message for call %s", self._call_id)
                    continue
                if not isinstance(event, dict):
                    continue
                for handler in self._handlers:
                    try:
                        await handler(event)
                    except Exception:
                        logger.exception(
                            "Realtime handler failed for call %s on %s",
                            self._call_id,
                            event.get("type"),
                        )
        except ConnectionClosed:
            logger.info("Realtime connection closed for call %s", self._call_id)

    async def close(self) -> None:
        await self._connection.close()
