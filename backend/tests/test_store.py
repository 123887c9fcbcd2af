"""Tests for the SQL-backed message store and the live feed."""

import asyncio

import pytest
from sqlmodel import SQLModel

from app.services.chat.feed import LiveFeed
from app.services.chat.store import SQLMessageStore, StoreError
from tests.conftest import seed_machine, test_engine


def test_insert_assigns_id_and_publishes():
    machine_id = seed_machine()
    feed = LiveFeed()
    received = []
    feed.subscribe(machine_id, received.append)
    store = SQLMessageStore(test_engine, feed)

    message = asyncio.run(store.insert_message("user", "Fuite d'huile", machine_id, "tech-1"))

    assert not message.is_temporary
    assert message.created_at.tzinfo is not None
    assert received == [message]


def test_list_returns_oldest_first_per_machine():
    m1 = seed_machine("Presse A")
    m2 = seed_machine("Tour B")
    store = SQLMessageStore(test_engine)

    async def scenario():
        await store.insert_message("user", "première", m1)
        await store.insert_message("assistant", "réponse", m1)
        await store.insert_message("user", "autre machine", m2)
        return await store.list_messages(m1)

    messages = asyncio.run(scenario())
    assert [m.content for m in messages] == ["première", "réponse"]


def test_delete_only_touches_one_machine():
    m1 = seed_machine("Presse A")
    m2 = seed_machine("Tour B")
    store = SQLMessageStore(test_engine)

    async def scenario():
        await store.insert_message("user", "a", m1)
        await store.insert_message("user", "b", m2)
        await store.delete_messages(m1)
        return await store.list_messages(m1), await store.list_messages(m2)

    left, right = asyncio.run(scenario())
    assert left == []
    assert [m.content for m in right] == ["b"]



def test_delete_announces_cleared_history():
    m1 = seed_machine("Presse A")
    m2 = seed_machine("Tour B")
    feed = LiveFeed()
    cleared = []
    feed.subscribe(m1, lambda message: None, cleared.append)
    gone = feed.subscribe(m1, lambda message: None, cleared.append)
    feed.subscribe(m2, lambda message: None, cleared.append)
    gone.unsubscribe()
    store = SQLMessageStore(test_engine, feed)

    asyncio.run(store.delete_messages(m1))

    assert cleared == [m1]

def test_database_errors_become_store_errors():
    store = SQLMessageStore(test_engine)
    SQLModel.metadata.drop_all(test_engine)

    with pytest.raises(StoreError):
        asyncio.run(store.list_messages("M1"))
    with pytest.raises(StoreError):
        asyncio.run(store.delete_messages("M1"))


def test_feed_unsubscribe_and_failing_listener():
    feed = LiveFeed()
    received = []

    def broken(message):
        raise RuntimeError("boom")

    feed.subscribe("M1", broken)
    sub = feed.subscribe("M1", received.append)
    store = SQLMessageStore(test_engine, feed)
    machine_id = "M1"

    asyncio.run(store.insert_message("user", "x", machine_id))
    assert len(received) == 1

    sub.unsubscribe()
    sub.unsubscribe()
    asyncio.run(store.insert_message("user", "y", machine_id))
    assert len(received) == 1
    assert feed.subscriber_count("M1") == 1
