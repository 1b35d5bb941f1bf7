import httpx
import pytest
from httpx import ASGITransport

from app.db import create_engine, create_session_factory, init_models
from app.services.meeting_store import MeetingStore
from app.services.transcript_collector import TranscriptCollector
from tests.helpers import STREAM_API_KEY, STREAM_API_SECRET


@pytest.fixture
def mock_env(monkeypatch, tmp_path):
    monkeypatch.setenv("STREAM_API_KEY", STREAM_API_KEY)
    monkeypatch.setenv("STREAM_API_SECRET", STREAM_API_SECRET)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key")
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("STORE_RETRY_DELAY", "0")
    monkeypatch.setenv("LLM_RETRY_DELAY", "0")


@pytest.fixture
async def client(mock_env):
    from app.main import app, lifespan

    async with lifespan(app):
        async with httpx.AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as c:
            yield c


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return MeetingStore(session_factory)


@pytest.fixture
def collector(session_factory):
    return TranscriptCollector(session_factory)
