import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.models import Agent, Meeting, MeetingStatus
from app.schemas.curriculum import Blueprint, SessionProgress

logger = logging.getLogger(__name__)

# A meeting in any of these states can no longer be started.
NOT_STARTABLE = (
    MeetingStatus.active,
    MeetingStatus.completed,
    MeetingStatus.cancelled,
    MeetingStatus.processing,
)

CANCELLABLE = (MeetingStatus.upcoming, MeetingStatus.active)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump_progress(progress: list[SessionProgress]) -> list[dict]:
    return [p.model_dump(mode="json") for p in progress]


class MeetingStore:
    """Meetings and agents in the relational store.

    Every status change is a conditional UPDATE on the expected prior status,
    so duplicate or reordered webhook deliveries turn into no-ops. Transition
    methods return True only when a row actually moved.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        async with self._sessions() as session:
            return await session.get(Meeting, meeting_id)

    async def get_meeting_with_agent(self, meeting_id: str) -> Meeting | None:
        async with self._sessions() as session:
            result = await session.execute(
                select(Meeting)
                .options(selectinload(Meeting.agent))
                .where(Meeting.id == meeting_id)
            )
            return result.scalar_one_or_none()

    async def get_agent(self, agent_id: str) -> Agent | None:
        async with self._sessions() as session:
            return await session.get(Agent, agent_id)

    async def _transition(self, meeting_id: str, allowed: tuple, values: dict) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.status.in_([s.value for s in allowed]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def start_meeting(self, meeting_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.status.not_in([s.value for s in NOT_STARTABLE]),
                )
                .values(status=MeetingStatus.active.value, started_at=_now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            moved = result.rowcount > 0
        if moved:
            logger.info("Meeting %s is now active", meeting_id)
        return moved

    async def begin_processing(self, meeting_id: str) -> bool:
        now = _now()
        moved = await self._transition(
            meeting_id,
            (MeetingStatus.active,),
            {
                "status": MeetingStatus.processing.value,
                "ended_at": now,
                "processing_started_at": now,
            },
        )
        if moved:
            logger.info("Meeting %s is now processing", meeting_id)
        return moved

    async def complete_meeting(
        self,
        meeting_id: str,
        summary: str,
        progress: list[SessionProgress] | None = None,
    ) -> bool:
        values: dict = {"status": MeetingStatus.completed.value, "summary": summary}
        if progress is not None:
            values["progress"] = _dump_progress(progress)
        moved = await self._transition(meeting_id, (MeetingStatus.processing,), values)
        if moved:
            logger.info("Meeting %s completed", meeting_id)
        return moved

    async def fail_meeting(self, meeting_id: str, error: str) -> bool:
        moved = await self._transition(
            meeting_id,
            (MeetingStatus.processing,),
            {"status": MeetingStatus.failed.value, "error": error},
        )
        if moved:
            logger.info("Meeting %s failed: %s", meeting_id, error)
        return moved

    async def cancel_meeting(self, meeting_id: str) -> bool:
        return await self._transition(
            meeting_id, CANCELLABLE, {"status": MeetingStatus.cancelled.value}
        )

    async def _set_field(self, meeting_id: str, **values) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                update(Meeting)
                .where(Meeting.id == meeting_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def set_transcript_url(self, meeting_id: str, url: str) -> bool:
        return await self._set_field(meeting_id, transcript_url=url)

    async def set_recording_url(self, meeting_id: str, url: str) -> bool:
        return await self._set_field(meeting_id, recording_url=url)

    async def create_meeting(
        self,
        *,
        name: str,
        user_id: str,
        agent_id: str,
        prompt: str,
        progress: list[SessionProgress] | None = None,
        meeting_data: dict | None = None,
        meeting_id: str | None = None,
    ) -> Meeting:
        meeting = Meeting(
            name=name,
            user_id=user_id,
            agent_id=agent_id,
            prompt=prompt,
            progress=_dump_progress(progress) if progress is not None else None,
            meeting_data=meeting_data,
            status=MeetingStatus.upcoming.value,
        )
        if meeting_id:
            meeting.id = meeting_id
        async with self._sessions() as session:
            session.add(meeting)
            await session.commit()
        logger.info("Created meeting %s (%s) for agent %s", meeting.id, name, agent_id)
        return meeting

    async def create_agent_from_blueprint(
        self, user_id: str, name: str, blueprint: Blueprint
    ) -> tuple[Agent, Meeting]:
        """Enroll a user: snapshot the blueprint and schedule its first session."""
        if not blueprint.sessions:
            raise ValueError("Blueprint has no sessions")

        first = blueprint.sessions[0]
        agent = Agent(
            name=name,
            user_id=user_id,
            instructions=first.prompt,
            blueprint_snapshot=blueprint.model_dump(mode="json"),
        )
        async with self._sessions() as session:
            session.add(agent)
            await session.flush()
            meeting = Meeting(
                name=first.session_name,
                user_id=user_id,
                agent_id=agent.id,
                prompt=first.prompt,
                meeting_data={
                    "blueprintId": blueprint.id,
                    "journeyStarted": _now().isoformat(),
                },
                status=MeetingStatus.upcoming.value,
            )
            session.add(meeting)
            await session.commit()

        logger.info("Enrolled user %s with agent %s, first meeting %s", user_id, agent.id, meeting.id)
        return agent, meeting

    async def list_stale_processing(self, older_than: timedelta) -> list[Meeting]:
        cutoff = _now() - older_than
        async with self._sessions() as session:
            result = await session.execute(
                select(Meeting)
                .where(
                    Meeting.status == MeetingStatus.processing.value,
                    Meeting.processing_started_at < cutoff,
                )
                .order_by(Meeting.processing_started_at)
            )
            return list(result.scalars())
