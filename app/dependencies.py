from typing import Annotated

from fastapi import Depends, Request

from app.config import Settings
from app.jobs import AnalysisSupervisor
from app.services.live_calls import LiveCallRegistry
from app.services.meeting_store import MeetingStore
from app.services.stream_auth import StreamCredentials
from app.services.transcript_collector import TranscriptCollector
from app.services.webhook_router import WebhookEventRouter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_meeting_store(request: Request) -> MeetingStore:
    return request.app.state.meeting_store


def get_transcript_collector(request: Request) -> TranscriptCollector:
    return request.app.state.transcript_collector


def get_live_calls(request: Request) -> LiveCallRegistry:
    return request.app.state.live_calls


def get_supervisor(request: Request) -> AnalysisSupervisor:
    return request.app.state.supervisor


def get_webhook_router(request: Request) -> WebhookEventRouter:
    return request.app.state.webhook_router


def get_credentials(request: Request) -> StreamCredentials:
    return request.app.state.credentials


SettingsDep = Annotated[Settings, Depends(get_settings)]
MeetingStoreDep = Annotated[MeetingStore, Depends(get_meeting_store)]
CollectorDep = Annotated[TranscriptCollector, Depends(get_transcript_collector)]
LiveCallsDep = Annotated[LiveCallRegistry, Depends(get_live_calls)]
SupervisorDep = Annotated[AnalysisSupervisor, Depends(get_supervisor)]
WebhookRouterDep = Annotated[WebhookEventRouter, Depends(get_webhook_router)]
CredentialsDep = Annotated[StreamCredentials, Depends(get_credentials)]
