"""Shared test fixtures for backend tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings
from app.core.database import get_session, register_models
from app.models.machine import Machine
from app.services.chat.answer import AnswerService, AnswerServiceError
from app.services.chat.store import MessageStore, StoreError
from app.services.chat.types import Message
from app.services.llm.base import BaseLLMProvider, LLMResponse

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def get_test_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    register_models()
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep documents and the chat cache in a temp dir; no artificial delays."""
    monkeypatch.setattr(settings, "data_dir", tmp_path / "data")
    monkeypatch.setattr(settings, "cache_path", tmp_path / "data" / "chat_cache.json")
    monkeypatch.setattr(settings, "welcome_delay", 0.0)
    monkeypatch.setattr(settings, "reset_welcome_delay", 0.0)
    monkeypatch.setattr(settings, "answer_service", "local")
    (tmp_path / "data").mkdir()


def seed_machine(name="Presse A", **fields) -> str:
    """Insert a machine directly into the test DB."""
    with Session(test_engine) as session:
        machine = Machine(name=name, **fields)
        session.add(machine)
        session.commit()
        session.refresh(machine)
        return machine.id


class FakeProvider(BaseLLMProvider):
    """LLM provider that records calls and returns a canned reply."""

    def __init__(self, reply="Vérifiez le vérin hydraulique."):
        self.reply = reply
        self.calls: list[tuple[list, str | None]] = []

    async def chat(self, messages, system=None):
        self.calls.append((messages, system))
        return LLMResponse(content=self.reply)


class FakeStore(MessageStore):
    """In-memory message store with a server-side clock and failure switches."""

    def __init__(self, feed=None, messages=None, start=T0):
        self.feed = feed
        self.messages: list[Message] = list(messages or [])
        self.clock = start
        self.next_id = 1
        self.fail_insert = False
        self.fail_list = False
        self.fail_delete = False

    async def list_messages(self, machine_id):
        if self.fail_list:
            raise StoreError("store unreachable")
        return [m for m in self.messages if m.machine_id == machine_id]

    async def insert_message(self, role, content, machine_id, author_id=None):
        if self.fail_insert:
            raise StoreError("store unreachable")
        self.clock = max(self.clock, datetime.now(timezone.utc)) + timedelta(milliseconds=1)
        message = Message(
            id=f"srv-{self.next_id}", role=role, content=content,
            machine_id=machine_id, created_at=self.clock,
        )
        self.next_id += 1
        self.messages.append(message)
        if self.feed is not None:
            self.feed.publish(message)
        return message

    async def delete_messages(self, machine_id):
        if self.fail_delete:
            raise StoreError("store unreachable")
        self.messages = [m for m in self.messages if m.machine_id != machine_id]
        if self.feed is not None:
            self.feed.publish_cleared(machine_id)


class FakeAnswers(AnswerService):
    """Answer service whose calls can be held open and released one by one."""

    def __init__(self, reply="Réponse de MAIA", hold=False):
        self.reply = reply
        self.hold = hold
        self.fail = False
        self.fallback: str | None = None
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.active = 0
        self.max_active = 0
        self.release = asyncio.Event() if hold else None

    async def ask(self, message, machine_id):
        self.calls.append(message)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.release is not None:
                await self.release.wait()
            if self.fail:
                raise AnswerServiceError("model unavailable", fallback_message=self.fallback)
            return f"{self.reply}: {message}"
        except asyncio.CancelledError:
            self.cancelled.append(message)
            raise
        finally:
            self.active -= 1


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def client(fake_provider):
    """FastAPI TestClient with all external deps patched."""
    with (
        patch("app.core.database.engine", test_engine),
        patch("app.api.chat.engine", test_engine),
        patch("app.services.assistant.get_llm_provider", return_value=fake_provider),
        patch("app.api.assistant.get_llm_provider", return_value=fake_provider),
    ):
        from app.main import app

        # Use FastAPI's dependency override for get_session
        app.dependency_overrides[get_session] = get_test_session

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
