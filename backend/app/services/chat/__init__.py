"""Chat session factory - wires the session manager to the database, feed and cache."""

from datetime import timedelta
from typing import Callable

from sqlalchemy.engine import Engine

from app.core.config import settings
from app.services.chat.answer import AnswerService, HttpAnswerService, LocalAnswerService
from app.services.chat.cache import ChatCache, JsonFileCache
from app.services.chat.feed import live_feed
from app.services.chat.session import ChatSessionManager, Notification, SessionSnapshot
from app.services.chat.store import SQLMessageStore


def get_chat_cache() -> ChatCache:
    return JsonFileCache(settings.cache_path)


def get_answer_service(engine: Engine, author_id: str | None = None) -> AnswerService:
    """Return the answer service selected by MAIA_ANSWER_SERVICE."""
    if settings.answer_service == "http":
        return HttpAnswerService(
            settings.assistant_url, timeout=settings.assistant_timeout, technician_id=author_id
        )
    if settings.answer_service == "local":
        return LocalAnswerService(engine, technician_id=author_id)
    raise ValueError(f"Unknown answer service: {settings.answer_service}")


def create_session_manager(
    engine: Engine,
    *,
    author_id: str | None = None,
    answers: AnswerService | None = None,
    cache: ChatCache | None = None,
    notifier: Callable[[Notification], None] | None = None,
    on_change: Callable[[SessionSnapshot], None] | None = None,
) -> ChatSessionManager:
    return ChatSessionManager(
        SQLMessageStore(engine, live_feed),
        live_feed,
        cache or get_chat_cache(),
        answers or get_answer_service(engine, author_id),
        author_id=author_id,
        notifier=notifier,
        on_change=on_change,
        welcome_delay=settings.welcome_delay,
        reset_welcome_delay=settings.reset_welcome_delay,
        dedup_window=timedelta(milliseconds=settings.dedup_window_ms),
    )
