import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .custom import (
    AgentNotFoundError,
    InvalidMeetingPromptError,
    MalformedEventError,
    MeetingNotFoundError,
    RateLimitError,
    StreamError,
    WebhookAuthError,
)

logger = logging.getLogger(__name__)


async def webhook_auth_error_handler(_request: Request, exc: WebhookAuthError) -> JSONResponse:
    logger.warning("Webhook rejected: %s", exc.message)
    return JSONResponse(status_code=401, content={"detail": exc.message})


async def malformed_event_error_handler(_request: Request, exc: MalformedEventError) -> JSONResponse:
    logger.warning("Malformed webhook payload: %s", exc.message)
    return JSONResponse(status_code=400, content={"detail": exc.message})


async def meeting_not_found_error_handler(_request: Request, exc: MeetingNotFoundError) -> JSONResponse:
    logger.info("Meeting not found: %s", exc.meeting_id)
    return JSONResponse(status_code=404, content={"detail": "Meeting not found"})


async def agent_not_found_error_handler(_request: Request, exc: AgentNotFoundError) -> JSONResponse:
    logger.info("Agent not found: %s", exc.agent_id)
    return JSONResponse(status_code=404, content={"detail": "Agent not found"})


async def invalid_prompt_error_handler(_request: Request, exc: InvalidMeetingPromptError) -> JSONResponse:
    logger.error("CRITICAL: %s", exc.message)
    return JSONResponse(status_code=500, content={"detail": exc.message})


async def stream_error_handler(_request: Request, exc: StreamError) -> JSONResponse:
    logger.error("Stream error: %s (status=%s)", exc.message, exc.status_code)
    return JSONResponse(
        status_code=502,
        content={"detail": f"Stream error: {exc.message}"},
    )


async def rate_limit_error_handler(_request: Request, exc: RateLimitError) -> JSONResponse:
    logger.warning("Rate limit hit for %s", exc.service)
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded for {exc.service}"},
    )
