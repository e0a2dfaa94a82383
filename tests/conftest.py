"""
Shared test fixtures for notequeue.

Uses a throwaway SQLite file per test (aiosqlite) with tables created from
the models, mocked Valkey (in-memory dict), and a fake note generator in
place of LLM calls.
"""

import os
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-tests")
os.environ.setdefault("RUN_EMBEDDED_SCHEDULER", "false")
# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from notequeue.db.base import Base  # noqa: E402
import notequeue.models  # noqa: E402,F401
from notequeue.main import app  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    db_path = tmp_path / "notequeue_test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"timeout": 30},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def notifier():
    from notequeue.core.notifier import JobEventNotifier

    return JobEventNotifier()


@pytest_asyncio.fixture(scope="function")
async def store(session_factory, notifier):
    from notequeue.core.store import SqlJobStore

    return SqlJobStore(session_factory, notifier=notifier, default_max_retries=3)


# ---------------------------------------------------------------------------
# Valkey mock (autouse, no live Valkey needed)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(autouse=True)
async def mock_valkey(monkeypatch):
    """Replace Valkey helpers with an in-memory dict."""
    store: dict[str, str] = {}

    async def _get_key(key: str) -> str | None:
        return store.get(key)

    async def _set_key(key: str, value: str, ttl: int | None = None) -> bool:
        store[key] = value
        return True

    async def _delete_key(key: str) -> bool:
        return store.pop(key, None) is not None

    async def _close() -> None:
        return None

    monkeypatch.setattr("notequeue.db.valkey.get_key", _get_key)
    monkeypatch.setattr("notequeue.db.valkey.set_key", _set_key)
    monkeypatch.setattr("notequeue.db.valkey.delete_key", _delete_key)
    monkeypatch.setattr("notequeue.db.valkey.close_valkey_client", _close)

    yield store
    store.clear()


# ---------------------------------------------------------------------------
# Note generator mock
# ---------------------------------------------------------------------------


class FakeNoteGenerator:
    """Records calls and returns canned notes. Set fail_with to raise instead."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[BaseException] = None

    async def generate_notes(self, text, title=None, options=None):
        from notequeue.core.notes import GeneratedNotes, QuizQuestion

        self.calls.append({"text": text, "title": title, "options": options or {}})
        if self.fail_with is not None:
            raise self.fail_with

        quiz = []
        if (options or {}).get("generate_quiz"):
            quiz = [QuizQuestion(question="What?", options=["a", "b"], answer="a")]
        return GeneratedNotes(
            content=f"# Notes\n\n{text[:40]}",
            summary="Mocked summary",
            quiz=quiz,
            title=title,
        )


@pytest_asyncio.fixture()
async def fake_generator():
    return FakeNoteGenerator()


@pytest_asyncio.fixture()
async def mock_llm(monkeypatch):
    """Mock litellm.acompletion with a canned chat completion."""

    def _response(content: str):
        message = MagicMock()
        message.content = content
        choice = MagicMock()
        choice.message = message
        response = MagicMock()
        response.choices = [choice]
        return response

    mock = AsyncMock(return_value=_response("Mocked notes"))
    mock.make_response = _response
    monkeypatch.setattr("notequeue.core.notes.acompletion", mock)
    return mock


# ---------------------------------------------------------------------------
# Queue components and test client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def subscriptions():
    from notequeue.core.subscriptions import StaticSubscriptionProvider

    return StaticSubscriptionProvider(default_tier="free")


@pytest_asyncio.fixture(scope="function")
async def queue(session_factory, fake_generator, subscriptions):
    """Queue components on the test database. The scheduler is not started."""
    from notequeue.bootstrap import build_queue

    components = build_queue(
        session_factory=session_factory,
        generator=fake_generator,
        subscriptions=subscriptions,
    )
    components.scheduler.poll_interval = 0.05
    components.gateway.poll_interval = 0.05
    components.facade.poll_interval = 0.05
    yield components
    await components.scheduler.stop(drain=False, timeout=1)


@pytest_asyncio.fixture(scope="function")
async def test_client(queue):
    from notequeue.bootstrap import attach_to_app

    attach_to_app(app, queue)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    for name in (
        "queue", "store", "scheduler", "facade", "notes", "gateway", "subscriptions"
    ):
        if hasattr(app.state, name):
            delattr(app.state, name)


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_auth_headers(user_id: str, **claims) -> dict:
    from notequeue.api.v1.helpers.authentication import create_access_token

    token = create_access_token({"sub": user_id, **claims})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def headers_for():
    """JWT auth headers for an arbitrary user id."""
    return make_auth_headers


@pytest_asyncio.fixture(scope="function")
async def user_id():
    return f"user-{uuid4().hex[:8]}"


@pytest_asyncio.fixture(scope="function")
async def auth_headers(user_id):
    return make_auth_headers(user_id)


# ---------------------------------------------------------------------------
# Factory fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def job_factory(store, session_factory):
    """Enqueue a job and optionally force its timestamps."""
    from notequeue.models.jobs import Job

    async def _create(
        user_id: str = "user-1",
        job_type: str = "text_notes",
        priority: str = "normal",
        input_data: dict | None = None,
        max_retries: int | None = None,
        pinned_to: str | None = None,
        **overrides,
    ) -> str:
        job_id = await store.enqueue(
            user_id,
            job_type,
            input_data
            if input_data is not None
            else {"content": "Photosynthesis converts light into chemical energy."},
            priority,
            max_retries=max_retries,
            pinned_to=pinned_to,
        )
        if overrides:
            async with session_factory() as session:
                await session.execute(
                    update(Job).where(Job.job_id == job_id).values(**overrides)
                )
                await session.commit()
        return job_id

    return _create
