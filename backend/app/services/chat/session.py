"""Chat session manager - one machine's transcript, kept in sync across cache, store and live feed.

The transcript changes from three sources: sends started here, full reloads
from the store, and messages pushed by the live feed. Every asynchronous
completion is checked against generation counters before it touches the
transcript, so results from superseded sends, stale initializations or a
previously selected machine are dropped.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from app.services.chat.answer import AnswerService, AnswerServiceError
from app.services.chat.cache import ChatCache, floor_key, messages_key, reset_key
from app.services.chat.feed import LiveFeed, Subscription
from app.services.chat.merge import DEDUP_WINDOW, apply_push, merge_messages
from app.services.chat.store import MessageStore, StoreError
from app.services.chat.types import (
    ASSISTANT,
    ERROR,
    SENDING,
    SENT,
    USER,
    Message,
    as_utc,
    new_temp_id,
    utcnow,
)

logger = logging.getLogger(__name__)

INIT_TEXT = (
    "🔄 Initialisation de MAIA pour la machine {name}...\n\n"
    "Analyse des documents techniques en cours..."
)
WELCOME_TEXT = (
    "✅ **MAIA** est maintenant connectée à la machine **{name}**.\n\n"
    "🤖 Je suis votre assistante IA spécialisée en maintenance industrielle. "
    "J'ai analysé les documents techniques disponibles pour cette machine.\n\n"
    "💡 **Comment puis-je vous aider ?**\n"
    "- Diagnostic de pannes\n"
    "- Procédures de maintenance\n"
    "- Identification de pièces détachées\n"
    "- Consignes de sécurité\n\n"
    "N'hésitez pas à me décrire le problème ou à me poser vos questions !"
)
FALLBACK_TEXT = "Désolé, je rencontre des difficultés techniques. Veuillez réessayer."


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: str = "default"  # "default" | "destructive"


@dataclass(frozen=True)
class SessionSnapshot:
    machine_id: str | None
    messages: tuple[Message, ...]
    is_loading: bool
    is_typing: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "machine_id": self.machine_id,
            "messages": [m.to_dict() for m in self.messages],
            "is_loading": self.is_loading,
            "is_typing": self.is_typing,
        }


class ChatSessionManager:
    def __init__(
        self,
        store: MessageStore,
        feed: LiveFeed,
        cache: ChatCache,
        answers: AnswerService,
        *,
        author_id: str | None = None,
        notifier: Callable[[Notification], None] | None = None,
        on_change: Callable[[SessionSnapshot], None] | None = None,
        welcome_delay: float = 2.0,
        reset_welcome_delay: float = 1.0,
        dedup_window: timedelta = DEDUP_WINDOW,
    ):
        self._store = store
        self._feed = feed
        self._cache = cache
        self._answers = answers
        self._author_id = author_id
        self._notifier = notifier
        self._on_change = on_change
        self._welcome_delay = welcome_delay
        self._reset_welcome_delay = reset_welcome_delay
        self._window = dedup_window

        self.machine_id: str | None = None
        self.is_loading = False
        self.is_typing = False
        self._messages: list[Message] = []
        # init placeholders: shown, never cached
        self._transient_ids: set[str] = set()
        self._subscription: Subscription | None = None

        self._session_gen = 0
        self._init_gen = 0
        self._send_gen = 0
        self._answer_task: asyncio.Future | None = None
        self._pending_text: str | None = None

    # --- read-only view ---

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            machine_id=self.machine_id,
            messages=tuple(self._messages),
            is_loading=self.is_loading,
            is_typing=self.is_typing,
        )

    # --- operations ---

    async def initialize(self, machine_id: str, machine_name: str, reset: bool = False) -> None:
        """Load or start the transcript for a machine. Never raises."""
        self._cancel_send()
        self._activate(machine_id)
        self._init_gen += 1
        token = self._init_gen
        self._set_flags(loading=True)

        try:
            pending_reset = self._consume_reset_flag(machine_id)
            if reset or pending_reset:
                await self._start_fresh(machine_id, machine_name, token)
                return

            cached = self._read_cached_transcript(machine_id)
            if cached is not None:
                self._set_messages(cached)
                self._set_flags(loading=False)
                await self._refresh(machine_id, token)
                return

            placeholder = self._placeholder(machine_id, machine_name)
            self._set_messages([placeholder])
            stored = await self._load_history(machine_id)
            if not self._init_current(token, machine_id):
                return
            if stored:
                self._transient_ids.discard(placeholder.id)
                self._set_messages(merge_messages(self._without(placeholder.id), stored, window=self._window))
                self._write_cache(machine_id)
            else:
                await self._welcome(placeholder, machine_name, token, self._welcome_delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Chat initialization failed for machine {machine_id}")
            if self._init_current(token, machine_id):
                self._transient_ids.clear()
                self._set_messages([self._welcome_message(machine_id, machine_name)])
                self._write_cache(machine_id)
        finally:
            if self._init_gen == token:
                self._set_flags(loading=False)

    async def send_message(self, text: str, machine_id: str | None = None) -> None:
        """Send a technician message and append the assistant's reply.

        Blank text, or the text of the send already in flight, is ignored. Any
        other call supersedes the pending send: its answer is cancelled and
        never applied.
        """
        if not text or not text.strip():
            return
        if self._pending_text == text:
            logger.debug("Ignoring repeated submit of the message in flight")
            return
        machine_id = machine_id or self.machine_id
        if machine_id is None:
            logger.warning("send_message called with no active machine")
            return
        if self.machine_id is None:
            self._activate(machine_id)

        self._cancel_send()
        token = self._send_gen
        session = self._session_gen
        self._pending_text = text

        def current() -> bool:
            return self._send_gen == token and self._session_gen == session

        optimistic = Message(
            id=new_temp_id(), role=USER, content=text, machine_id=machine_id, status=SENDING
        )
        self._append(machine_id, optimistic)

        try:
            try:
                stored = await self._store.insert_message(USER, text, machine_id, self._author_id)
            except Exception as e:
                logger.error(f"Could not store message for machine {machine_id}: {e}")
                if self._session_gen == session:
                    self._fail(machine_id, {optimistic.id})
                return

            if self._session_gen == session:
                self._confirm(machine_id, optimistic.id, stored)
            if not current():
                return

            self._set_flags(typing=True)
            task = asyncio.ensure_future(self._answers.ask(text, machine_id))
            self._answer_task = task
            try:
                reply = await task
            except asyncio.CancelledError:
                if current():
                    raise
                logger.debug(f"Answer for {optimistic.id} superseded")
                return
            except Exception as e:
                if not current():
                    return
                logger.error(f"Answer service failed for machine {machine_id}: {e}")
                fallback = e.fallback_message if isinstance(e, AnswerServiceError) else None
                self._fail(machine_id, {optimistic.id, stored.id}, fallback)
                return
            if not current():
                return

            try:
                answer = await self._store.insert_message(ASSISTANT, reply, machine_id, None)
            except Exception as e:
                logger.error(f"Could not store assistant reply for machine {machine_id}: {e}")
                answer = Message(id=new_temp_id(), role=ASSISTANT, content=reply, machine_id=machine_id)
            if current():
                self._append(machine_id, answer)
        finally:
            if self._send_gen == token:
                self._pending_text = None
                self._answer_task = None
                self._set_flags(typing=False)

    async def delete_chat_for_machine(self, machine_id: str) -> bool:
        """Delete a machine's history from the store, then from the cache.

        On store failure nothing local is touched and False is returned.
        """
        try:
            await self._store.delete_messages(machine_id)
        except Exception as e:
            logger.error(f"Could not delete chat for machine {machine_id}: {e}")
            return False

        for key in (messages_key(machine_id), floor_key(machine_id), reset_key(machine_id)):
            self._cache_remove(key)
        if machine_id == self.machine_id:
            self._drop_transcript()
        logger.info(f"Deleted chat history for machine {machine_id}")
        return True

    def clear(self) -> None:
        """Drop the transcript and its cache entry; the store is left alone."""
        self._drop_transcript()
        if self.machine_id:
            self._cache_remove(messages_key(self.machine_id))

    def close(self) -> None:
        self._cancel_send()
        self._init_gen += 1
        self._session_gen += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    # --- initialization steps ---

    def _init_current(self, token: int, machine_id: str) -> bool:
        return self._init_gen == token and self.machine_id == machine_id

    async def _start_fresh(self, machine_id: str, machine_name: str, token: int) -> None:
        self._cache_remove(messages_key(machine_id))
        # hide everything stored so far from this cache's view of the machine
        self._cache_set(floor_key(machine_id), utcnow().isoformat())
        self._transient_ids.clear()
        placeholder = self._placeholder(machine_id, machine_name)
        self._set_messages([placeholder])
        await self._welcome(placeholder, machine_name, token, self._reset_welcome_delay)

    async def _welcome(self, placeholder: Message, machine_name: str, token: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._init_current(token, placeholder.machine_id):
            return
        welcome = self._welcome_message(placeholder.machine_id, machine_name, placeholder.created_at)
        self._transient_ids.discard(placeholder.id)
        self._set_messages(merge_messages(self._without(placeholder.id), [welcome], window=self._window))
        self._write_cache(placeholder.machine_id)

    async def _load_history(self, machine_id: str) -> list[Message]:
        try:
            stored = await self._store.list_messages(machine_id)
        except StoreError as e:
            logger.error(f"Could not load chat history for machine {machine_id}: {e}")
            return []
        return self._above_floor(machine_id, stored)

    async def _refresh(self, machine_id: str, token: int) -> None:
        try:
            stored = await self._store.list_messages(machine_id)
        except StoreError as e:
            logger.warning(f"Keeping cached chat for machine {machine_id}, refresh failed: {e}")
            return
        if not self._init_current(token, machine_id):
            return
        merged = merge_messages(self._messages, self._above_floor(machine_id, stored), window=self._window)
        if merged != self._messages:
            self._set_messages(merged)
            self._write_cache(machine_id)

    def _above_floor(self, machine_id: str, messages: list[Message]) -> list[Message]:
        floor = self._history_floor(machine_id)
        if floor is None:
            return messages
        return [m for m in messages if m.created_at > floor]

    def _placeholder(self, machine_id: str, machine_name: str) -> Message:
        message = Message(
            id=new_temp_id(),
            role=ASSISTANT,
            content=INIT_TEXT.format(name=machine_name),
            machine_id=machine_id,
        )
        self._transient_ids.add(message.id)
        return message

    def _welcome_message(
        self, machine_id: str, machine_name: str, created_at: datetime | None = None
    ) -> Message:
        return Message(
            id=new_temp_id(),
            role=ASSISTANT,
            content=WELCOME_TEXT.format(name=machine_name),
            machine_id=machine_id,
            created_at=created_at or utcnow(),
        )

    # --- transcript mutation ---

    def _activate(self, machine_id: str) -> None:
        if machine_id == self.machine_id:
            return
        self._cancel_send()
        self._session_gen += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
        self.machine_id = machine_id
        self._messages = []
        self._transient_ids.clear()
        self._subscription = self._feed.subscribe(machine_id, self._on_push, self._on_cleared)
        self._changed()

    def _on_push(self, message: Message) -> None:
        if message.machine_id != self.machine_id:
            return
        merged, accepted = apply_push(self._messages, message, window=self._window)
        if not accepted:
            logger.debug(f"Dropped pushed message {message.id} (duplicate or out of order)")
            return
        self._set_messages(merged)
        self._write_cache(message.machine_id)

    def _on_cleared(self, machine_id: str) -> None:
        # another session deleted the history; the cache is theirs to clear
        if machine_id != self.machine_id:
            return
        logger.debug(f"Chat history for machine {machine_id} cleared elsewhere")
        self._drop_transcript()

    def _drop_transcript(self) -> None:
        self._cancel_send()
        self._init_gen += 1
        self._transient_ids.clear()
        self._set_messages([])
        self._set_flags(loading=False)

    def _without(self, message_id: str) -> list[Message]:
        return [m for m in self._messages if m.id != message_id]

    def _append(self, machine_id: str, message: Message) -> None:
        if machine_id != self.machine_id:
            return
        self._set_messages(merge_messages(self._messages, [message], window=self._window))
        self._write_cache(machine_id)

    def _confirm(self, machine_id: str, temp_id: str, stored: Message) -> None:
        if machine_id != self.machine_id:
            return
        confirmed = stored.with_status(SENT)
        ids = {temp_id, stored.id}
        if any(m.id in ids for m in self._messages):
            updated = [confirmed if m.id in ids else m for m in self._messages]
            self._set_messages(merge_messages(updated, window=self._window))
        else:
            self._set_messages(merge_messages(self._messages, [confirmed], window=self._window))
        self._write_cache(machine_id)

    def _fail(self, machine_id: str, message_ids: set[str], fallback_text: str | None = None) -> None:
        if machine_id == self.machine_id:
            self._set_messages([
                m.with_status(ERROR) if m.id in message_ids else m for m in self._messages
            ])
            fallback = Message(
                id=new_temp_id(),
                role=ASSISTANT,
                content=fallback_text or FALLBACK_TEXT,
                machine_id=machine_id,
            )
            self._append(machine_id, fallback)
        self._notify(Notification(
            title="Erreur",
            description="Impossible de contacter l'assistant IA",
            variant="destructive",
        ))

    def _cancel_send(self) -> None:
        self._send_gen += 1
        self._pending_text = None
        if self._answer_task is not None and not self._answer_task.done():
            self._answer_task.cancel()
        self._answer_task = None
        self._set_flags(typing=False)

    def _set_messages(self, messages: list[Message]) -> None:
        self._messages = messages
        self._changed()

    def _set_flags(self, loading: bool | None = None, typing: bool | None = None) -> None:
        changed = False
        if loading is not None and loading != self.is_loading:
            self.is_loading = loading
            changed = True
        if typing is not None and typing != self.is_typing:
            self.is_typing = typing
            changed = True
        if changed:
            self._changed()

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.snapshot())
        except Exception:
            logger.exception("Chat state listener failed")

    def _notify(self, notification: Notification) -> None:
        logger.info(f"Notification: {notification.title} - {notification.description}")
        if self._notifier is None:
            return
        try:
            self._notifier(notification)
        except Exception:
            logger.exception("Chat notifier failed")

    # --- cache, best effort ---

    def _cache_get(self, key: str) -> str | None:
        try:
            return self._cache.get(key)
        except Exception as e:
            logger.debug(f"Chat cache read failed for {key}: {e}")
            return None

    def _cache_set(self, key: str, value: str) -> None:
        try:
            self._cache.set(key, value)
        except Exception as e:
            logger.debug(f"Chat cache write failed for {key}: {e}")

    def _cache_remove(self, key: str) -> None:
        try:
            self._cache.remove(key)
        except Exception as e:
            logger.debug(f"Chat cache remove failed for {key}: {e}")

    def _consume_reset_flag(self, machine_id: str) -> bool:
        if self._cache_get(reset_key(machine_id)) != "true":
            return False
        self._cache_remove(reset_key(machine_id))
        return True

    def _history_floor(self, machine_id: str) -> datetime | None:
        raw = self._cache_get(floor_key(machine_id))
        if not raw:
            return None
        try:
            return as_utc(datetime.fromisoformat(raw))
        except ValueError:
            return None

    def _read_cached_transcript(self, machine_id: str) -> list[Message] | None:
        raw = self._cache_get(messages_key(machine_id))
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("cached transcript is not a list")
            messages = [Message.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable chat cache for machine {machine_id}: {e}")
            self._cache_remove(messages_key(machine_id))
            return None
        if not messages:
            return None
        return merge_messages(messages, window=self._window)

    def _write_cache(self, machine_id: str) -> None:
        if machine_id != self.machine_id:
            return
        durable = [m.to_dict() for m in self._messages if m.id not in self._transient_ids]
        self._cache_set(messages_key(machine_id), json.dumps(durable))
