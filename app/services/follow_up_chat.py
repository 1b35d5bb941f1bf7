import logging

from app.exceptions.custom import AgentNotFoundError, MalformedEventError, MeetingNotFoundError
from app.mappers.follow_up import avatar_url, build_chat_history, build_follow_up_instructions
from app.models import MeetingStatus
from app.schemas.responses import WebhookAck
from app.schemas.stream import MessageNewEvent
from app.services.claude import ClaudeService
from app.services.meeting_store import MeetingStore
from app.services.stream_chat import StreamChatService

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 5


class FollowUpChatService:
    """Answers chat messages about a completed meeting as its agent."""

    def __init__(
        self,
        store: MeetingStore,
        chat: StreamChatService,
        claude: ClaudeService,
    ):
        self._store = store
        self._chat = chat
        self._claude = claude

    async def reply(self, event: MessageNewEvent) -> WebhookAck:
        user_id = event.user.id if event.user else None
        text = event.message.text if event.message else None
        channel_id = event.channel_id
        if not user_id or not channel_id or not text:
            raise MalformedEventError("Missing required fields")

        meeting = await self._store.get_meeting(channel_id)
        if meeting is None or meeting.status != MeetingStatus.completed:
            raise MeetingNotFoundError(channel_id)

        agent = await self._store.get_agent(meeting.agent_id)
        if agent is None:
            raise AgentNotFoundError(meeting.agent_id)

        if user_id == agent.id:
            return WebhookAck(message="Agent message ignored")

        history = await self._chat.get_recent_messages(channel_id, limit=HISTORY_WINDOW)
        reply = await self._claude.complete(
            build_follow_up_instructions(meeting.summary, meeting.prompt),
            build_chat_history(history, agent.id, text),
        )
        if not reply:
            raise MalformedEventError("No response from language model")

        await self._chat.upsert_user(agent.id, agent.name, avatar_url(agent.name))
        await self._chat.send_message(channel_id, agent.id, reply)
        logger.info("Replied in channel %s as agent %s", channel_id, agent.id)
        return WebhookAck()
