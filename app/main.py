import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from app.config import Settings
from app.db import create_engine, create_session_factory, init_models
from app.exceptions.custom import (
    AgentNotFoundError,
    InvalidMeetingPromptError,
    MalformedEventError,
    MeetingNotFoundError,
    RateLimitError,
    StreamError,
    WebhookAuthError,
)
from app.exceptions.handlers import (
    agent_not_found_error_handler,
    invalid_prompt_error_handler,
    malformed_event_error_handler,
    meeting_not_found_error_handler,
    rate_limit_error_handler,
    stream_error_handler,
    webhook_auth_error_handler,
)
from app.jobs import AnalysisSupervisor
from app.routers.meetings import router as meetings_router
from app.routers.webhook import router as webhook_router
from app.services.claude import ClaudeService
from app.services.follow_up_chat import FollowUpChatService
from app.services.live_calls import LiveCallRegistry
from app.services.meeting_analysis import MeetingAnalyzer
from app.services.meeting_store import MeetingStore
from app.services.post_call import PostCallPipeline, RetryPolicy
from app.services.stream_auth import StreamCredentials
from app.services.stream_chat import StreamChatService
from app.services.stream_video import StreamVideoService
from app.services.transcript_collector import TranscriptCollector
from app.services.webhook_router import WebhookEventRouter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    engine = create_engine(settings.database_url)
    await init_models(engine)
    session_factory = create_session_factory(engine)

    async with httpx.AsyncClient(timeout=30.0) as client:
        credentials = StreamCredentials(settings.stream_api_key, settings.stream_api_secret)
        store = MeetingStore(session_factory)
        collector = TranscriptCollector(session_factory)
        claude = ClaudeService(settings.anthropic_api_key)
        live_calls = LiveCallRegistry()

        pipeline = PostCallPipeline(
            store,
            collector,
            MeetingAnalyzer(claude),
            claude,
            store_retry=RetryPolicy(settings.store_retry_attempts, settings.store_retry_delay),
            llm_retry=RetryPolicy(settings.llm_retry_attempts, settings.llm_retry_delay),
        )
        supervisor = AnalysisSupervisor(pipeline, max_jobs=settings.max_analysis_jobs)

        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set, calls will not get a voice agent")
        video = StreamVideoService(client, credentials, settings.openai_api_key)
        follow_up = FollowUpChatService(store, StreamChatService(client, credentials), claude)

        app.state.settings = settings
        app.state.credentials = credentials
        app.state.meeting_store = store
        app.state.transcript_collector = collector
        app.state.live_calls = live_calls
        app.state.supervisor = supervisor
        app.state.webhook_router = WebhookEventRouter(
            store, collector, live_calls, supervisor, video, follow_up
        )

        try:
            yield
        finally:
            await live_calls.close_all()
            await supervisor.shutdown()
            await engine.dispose()


app = FastAPI(title="Coaching Call Orchestrator", lifespan=lifespan)

app.add_exception_handler(WebhookAuthError, webhook_auth_error_handler)
app.add_exception_handler(MalformedEventError, malformed_event_error_handler)
app.add_exception_handler(MeetingNotFoundError, meeting_not_found_error_handler)
app.add_exception_handler(AgentNotFoundError, agent_not_found_error_handler)
app.add_exception_handler(InvalidMeetingPromptError, invalid_prompt_error_handler)
app.add_exception_handler(StreamError, stream_error_handler)
app.add_exception_handler(RateLimitError, rate_limit_error_handler)

app.include_router(webhook_router)
app.include_router(meetings_router)
