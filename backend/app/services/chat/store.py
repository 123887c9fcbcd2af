"""Persistent message store backed by the ChatMessage table."""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.chat import ChatMessage
from app.services.chat.feed import LiveFeed
from app.services.chat.types import Message, as_utc

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class MessageStore(ABC):
    @abstractmethod
    async def list_messages(self, machine_id: str) -> list[Message]:
        """Return every message for the machine, oldest first."""
        ...

    @abstractmethod
    async def insert_message(
        self, role: str, content: str, machine_id: str, author_id: str | None = None
    ) -> Message:
        """Store a message; the store assigns its id and timestamp."""
        ...

    @abstractmethod
    async def delete_messages(self, machine_id: str) -> None:
        ...


def to_message(row: ChatMessage) -> Message:
    return Message(
        id=row.id,
        role=row.role,
        content=row.content,
        machine_id=row.machine_id,
        created_at=as_utc(row.created_at),
    )


class SQLMessageStore(MessageStore):
    def __init__(self, engine: Engine, feed: LiveFeed | None = None):
        self.engine = engine
        self.feed = feed

    async def list_messages(self, machine_id: str) -> list[Message]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(ChatMessage)
                    .where(ChatMessage.machine_id == machine_id)
                    .order_by(ChatMessage.created_at)  # type: ignore
                ).all()
                return [to_message(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Could not load messages for machine {machine_id}: {e}") from e

    async def insert_message(
        self, role: str, content: str, machine_id: str, author_id: str | None = None
    ) -> Message:
        try:
            with Session(self.engine) as session:
                row = ChatMessage(
                    machine_id=machine_id,
                    technician_id=author_id,
                    role=role,
                    content=content,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                message = to_message(row)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not save message for machine {machine_id}: {e}") from e

        logger.debug(f"Stored {role} message {message.id} for machine {machine_id}")
        if self.feed is not None:
            self.feed.publish(message)
        return message

    async def delete_messages(self, machine_id: str) -> None:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(ChatMessage).where(ChatMessage.machine_id == machine_id)
                ).all()
                for row in rows:
                    session.delete(row)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Could not delete messages for machine {machine_id}: {e}") from e
        logger.debug(f"Deleted chat messages for machine {machine_id}")
        if self.feed is not None:
            self.feed.publish_cleared(machine_id)
