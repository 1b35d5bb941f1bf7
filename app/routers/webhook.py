import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError

from app.dependencies import CredentialsDep, WebhookRouterDep
from app.exceptions.custom import (
    AgentNotFoundError,
    InvalidMeetingPromptError,
    MalformedEventError,
    MeetingNotFoundError,
    RateLimitError,
    StreamError,
    WebhookAuthError,
)
from app.schemas.responses import WebhookAck
from app.schemas.stream import WebhookEvent, WebhookEventType

logger = logging.getLogger(__name__)

router = APIRouter()

_event_adapter = TypeAdapter(WebhookEvent)

# Left to the registered exception handlers
_HANDLED_ERRORS = (
    MalformedEventError,
    MeetingNotFoundError,
    AgentNotFoundError,
    InvalidMeetingPromptError,
    StreamError,
    RateLimitError,
)


def _authenticate(request: Request, body: bytes, credentials) -> None:
    signature = request.headers.get("x-signature")
    api_key = request.headers.get("x-api-key")
    if not signature or not api_key:
        raise WebhookAuthError("Missing signature or API key")
    if api_key != credentials.api_key:
        raise WebhookAuthError("Invalid API key")
    if not credentials.verify_webhook(body, signature):
        raise WebhookAuthError("Invalid signature")


@router.post("/api/webhook", response_model=WebhookAck)
@router.post("/api/webhooks", response_model=WebhookAck, include_in_schema=False)
async def receive_webhook(
    request: Request,
    credentials: CredentialsDep,
    events: WebhookRouterDep,
):
    body = await request.body()
    _authenticate(request, body, credentials)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedEventError("Invalid JSON")
    if not isinstance(payload, dict):
        raise MalformedEventError("Invalid JSON")

    event_type = payload.get("type")
    if event_type not in WebhookEventType.__members__.values():
        logger.info("Ignoring webhook event type: %s", event_type)
        return WebhookAck(status="ignored")

    try:
        event = _event_adapter.validate_python(payload)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid {event_type} payload: {exc.error_count()} errors")

    try:
        return await events.dispatch(event)
    except _HANDLED_ERRORS:
        raise
    except Exception:
        logger.exception("Webhook %s failed", event_type)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})
