import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Coroutine

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlmodel import Session, select

from app.core.database import engine, get_session
from app.models.chat import ChatMessage
from app.models.machine import Machine
from app.services.chat import create_session_manager, get_chat_cache
from app.services.chat.cache import floor_key, messages_key, reset_key
from app.services.chat.feed import live_feed
from app.services.chat.types import as_utc

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket):
    """Drive one ChatSessionManager per connection.

    Client frames: init, send, delete, clear. The server answers with state
    snapshots, notifications and delete results, in the order they happen.
    """
    await websocket.accept()
    technician_id = websocket.query_params.get("technician_id")
    outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    manager = create_session_manager(
        engine,
        author_id=technician_id,
        notifier=lambda n: outbox.put_nowait({"type": "notification", **asdict(n)}),
        on_change=lambda s: outbox.put_nowait({"type": "state", **s.to_dict()}),
    )
    tasks: set[asyncio.Task] = set()

    def spawn(coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def pump() -> None:
        while True:
            frame = await outbox.get()
            await websocket.send_json(frame)

    async def delete_chat(machine_id: str) -> None:
        ok = await manager.delete_chat_for_machine(machine_id)
        outbox.put_nowait({"type": "deleted", "machine_id": machine_id, "ok": ok})

    sender = asyncio.create_task(pump())

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
                kind = data["type"]
            except (json.JSONDecodeError, TypeError, KeyError):
                outbox.put_nowait({"type": "error", "detail": "Invalid frame"})
                continue

            if kind == "init":
                machine_id = data.get("machine_id")
                name = data.get("machine_name") or (_machine_name(machine_id) if machine_id else None)
                if not machine_id or name is None:
                    outbox.put_nowait({"type": "error", "detail": "Unknown machine"})
                    continue
                spawn(manager.initialize(machine_id, name, reset=bool(data.get("reset"))))
            elif kind == "send":
                if not (data.get("machine_id") or manager.machine_id):
                    outbox.put_nowait({"type": "error", "detail": "No machine selected"})
                    continue
                spawn(manager.send_message(data.get("content") or "", data.get("machine_id")))
            elif kind == "delete":
                machine_id = data.get("machine_id") or manager.machine_id
                if not machine_id:
                    outbox.put_nowait({"type": "error", "detail": "No machine selected"})
                    continue
                spawn(delete_chat(machine_id))
            elif kind == "clear":
                manager.clear()
            else:
                outbox.put_nowait({"type": "error", "detail": f"Unknown frame type: {kind}"})

    except WebSocketDisconnect:
        logger.debug("Chat WebSocket disconnected")
    finally:
        manager.close()
        for task in list(tasks):
            task.cancel()
        sender.cancel()
        await asyncio.gather(sender, *tasks, return_exceptions=True)


def _machine_name(machine_id: str) -> str | None:
    with Session(engine) as session:
        machine = session.get(Machine, machine_id)
        return machine.name if machine else None


@router.get("/{machine_id}/messages")
async def list_messages(machine_id: str, session: Session = Depends(get_session)):
    if not session.get(Machine, machine_id):
        raise HTTPException(status_code=404, detail="Machine not found")

    messages = session.exec(
        select(ChatMessage)
        .where(ChatMessage.machine_id == machine_id)
        .order_by(ChatMessage.created_at)  # type: ignore
    ).all()
    return [
        {
            "id": m.id,
            "role": m.role,
            "content": m.content,
            "technician_id": m.technician_id,
            "created_at": as_utc(m.created_at).isoformat(),
        }
        for m in messages
    ]


@router.delete("/{machine_id}")
async def delete_chat(machine_id: str, session: Session = Depends(get_session)):
    if not session.get(Machine, machine_id):
        raise HTTPException(status_code=404, detail="Machine not found")

    messages = session.exec(
        select(ChatMessage).where(ChatMessage.machine_id == machine_id)
    ).all()
    for msg in messages:
        session.delete(msg)
    session.commit()

    # Store first, then live sessions, then cache: a failed delete leaves all untouched
    live_feed.publish_cleared(machine_id)
    cache = get_chat_cache()
    for key in (messages_key(machine_id), floor_key(machine_id), reset_key(machine_id)):
        cache.remove(key)
    logger.debug(f"Deleted {len(messages)} chat messages for machine {machine_id}")
    return {"status": "deleted", "count": len(messages)}
