"""REST API for intervention reports."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from app.core.database import get_session
from app.models.intervention import InterventionReport
from app.models.machine import Machine
from app.services.chat import get_chat_cache
from app.services.chat.cache import request_reset

router = APIRouter()
logger = logging.getLogger(__name__)


class InterventionCreate(BaseModel):
    machine_id: str
    technician_id: str | None = None
    description: str = ""
    actions: str = ""
    parts_used: str | None = None
    time_spent: float | None = Field(default=None, ge=0)
    finalized: bool = False


def _report_dict(r: InterventionReport) -> dict:
    return {
        "id": r.id,
        "machine_id": r.machine_id,
        "technician_id": r.technician_id,
        "description": r.description,
        "actions": r.actions,
        "parts_used": r.parts_used,
        "time_spent": r.time_spent,
        "status": r.status,
        "created_at": r.created_at.isoformat(),
    }


@router.get("/")
async def list_interventions(
    machine_id: str | None = None, limit: int = 50, session: Session = Depends(get_session)
):
    query = select(InterventionReport)
    if machine_id:
        query = query.where(InterventionReport.machine_id == machine_id)
    reports = session.exec(
        query.order_by(InterventionReport.created_at.desc()).limit(limit)  # type: ignore
    ).all()
    return [_report_dict(r) for r in reports]


@router.post("/")
async def create_intervention(body: InterventionCreate, session: Session = Depends(get_session)):
    if not session.get(Machine, body.machine_id):
        raise HTTPException(status_code=404, detail="Machine not found")
    if body.finalized and not body.description.strip():
        raise HTTPException(
            status_code=400, detail="A description is required to finalize an intervention"
        )

    report = InterventionReport(
        machine_id=body.machine_id,
        technician_id=body.technician_id,
        description=body.description,
        actions=body.actions,
        parts_used=body.parts_used or None,
        time_spent=body.time_spent,
        status="termine" if body.finalized else "brouillon",
    )
    session.add(report)
    session.commit()
    session.refresh(report)

    # A finished intervention starts the next assistant session from scratch
    if body.finalized:
        request_reset(get_chat_cache(), body.machine_id)

    logger.info(f"Saved intervention {report.id} for machine {body.machine_id} ({report.status})")
    return _report_dict(report)
