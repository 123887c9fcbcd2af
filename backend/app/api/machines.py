"""REST API for machine administration."""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import PurePath

from fastapi import APIRouter, Depends, HTTPException, UploadFile
from pydantic import BaseModel
from sqlmodel import Session, select

from app.core.database import get_session
from app.core.sandbox import SandboxError, relative_to_sandbox, resolve_sandboxed_path
from app.models.chat import ChatMessage
from app.models.intervention import InterventionReport
from app.models.machine import Machine
from app.services.chat import get_chat_cache
from app.services.chat.cache import floor_key, messages_key, request_reset, reset_key
from app.services.chat.feed import live_feed

router = APIRouter()
logger = logging.getLogger(__name__)

MACHINE_STATUSES = ("operational", "maintenance", "alert")
DOCUMENT_SUFFIXES = (".pdf", ".txt", ".md")


class MachineCreate(BaseModel):
    name: str
    type: str = ""
    serial_number: str | None = None
    location: str = ""
    status: str = "operational"


class MachineUpdate(BaseModel):
    name: str | None = None
    type: str | None = None
    serial_number: str | None = None
    location: str | None = None
    status: str | None = None


def _machine_dict(m: Machine) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "type": m.type,
        "serial_number": m.serial_number,
        "location": m.location,
        "status": m.status,
        "manual_path": m.manual_path,
        "notice_path": m.notice_path,
        "created_at": m.created_at.isoformat(),
        "updated_at": m.updated_at.isoformat(),
    }


def _check_status(status: str) -> None:
    if status not in MACHINE_STATUSES:
        raise HTTPException(
            status_code=400, detail=f"Status must be one of: {', '.join(MACHINE_STATUSES)}"
        )


def _get_machine(session: Session, machine_id: str) -> Machine:
    machine = session.get(Machine, machine_id)
    if not machine:
        raise HTTPException(status_code=404, detail="Machine not found")
    return machine


@router.get("/")
async def list_machines(session: Session = Depends(get_session)):
    machines = session.exec(select(Machine).order_by(Machine.name)).all()  # type: ignore
    return [_machine_dict(m) for m in machines]


@router.post("/")
async def create_machine(body: MachineCreate, session: Session = Depends(get_session)):
    _check_status(body.status)
    machine = Machine(
        name=body.name,
        type=body.type,
        serial_number=body.serial_number,
        location=body.location,
        status=body.status,
    )
    session.add(machine)
    session.commit()
    session.refresh(machine)
    logger.info(f"Created machine {machine.name} ({machine.id})")
    return _machine_dict(machine)


@router.get("/{machine_id}")
async def get_machine(machine_id: str, session: Session = Depends(get_session)):
    return _machine_dict(_get_machine(session, machine_id))


@router.patch("/{machine_id}")
async def update_machine(
    machine_id: str, body: MachineUpdate, session: Session = Depends(get_session)
):
    machine = _get_machine(session, machine_id)

    if body.name is not None:
        machine.name = body.name
    if body.type is not None:
        machine.type = body.type
    if body.serial_number is not None:
        machine.serial_number = body.serial_number
    if body.location is not None:
        machine.location = body.location
    if body.status is not None:
        _check_status(body.status)
        machine.status = body.status

    machine.updated_at = datetime.now(timezone.utc)
    session.add(machine)
    session.commit()
    session.refresh(machine)
    return _machine_dict(machine)


@router.delete("/{machine_id}")
async def delete_machine(machine_id: str, session: Session = Depends(get_session)):
    machine = _get_machine(session, machine_id)

    # Delete dependent rows first
    messages = session.exec(
        select(ChatMessage).where(ChatMessage.machine_id == machine_id)
    ).all()
    for msg in messages:
        session.delete(msg)
    reports = session.exec(
        select(InterventionReport).where(InterventionReport.machine_id == machine_id)
    ).all()
    for report in reports:
        session.delete(report)

    session.delete(machine)
    session.commit()

    live_feed.publish_cleared(machine_id)
    cache = get_chat_cache()
    for key in (messages_key(machine_id), floor_key(machine_id), reset_key(machine_id)):
        cache.remove(key)
    logger.info(
        f"Deleted machine {machine_id} with {len(messages)} messages and {len(reports)} reports"
    )
    return {"status": "deleted"}


async def _store_document(
    machine: Machine, kind: str, file: UploadFile, session: Session
) -> dict:
    filename = PurePath(file.filename or "").name
    if not filename or PurePath(filename).suffix.lower() not in DOCUMENT_SUFFIXES:
        raise HTTPException(
            status_code=400, detail=f"Document must be one of: {', '.join(DOCUMENT_SUFFIXES)}"
        )

    try:
        target = resolve_sandboxed_path(f"machines/{machine.id}/{kind}/{filename}")
    except SandboxError as e:
        raise HTTPException(status_code=403, detail=str(e))

    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as f:
        shutil.copyfileobj(file.file, f)

    relative = relative_to_sandbox(target)
    if kind == "manual":
        machine.manual_path = relative
    else:
        machine.notice_path = relative
    machine.updated_at = datetime.now(timezone.utc)
    session.add(machine)
    session.commit()

    # Conversations about the previous documents no longer apply
    request_reset(get_chat_cache(), machine.id)
    return {"status": "uploaded", "path": relative}


@router.post("/{machine_id}/manual")
async def upload_manual(
    machine_id: str, file: UploadFile, session: Session = Depends(get_session)
):
    return await _store_document(_get_machine(session, machine_id), "manual", file, session)


@router.post("/{machine_id}/notice")
async def upload_notice(
    machine_id: str, file: UploadFile, session: Session = Depends(get_session)
):
    return await _store_document(_get_machine(session, machine_id), "notice", file, session)
