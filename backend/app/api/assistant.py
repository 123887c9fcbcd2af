"""HTTP answer service - one MAIA reply per request."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlmodel import Session

from app.core.database import get_session
from app.services.assistant import FALLBACK_MESSAGE, MachineNotFoundError, MaintenanceAssistant
from app.services.llm import get_llm_provider

router = APIRouter()
logger = logging.getLogger(__name__)


class AssistantRequest(BaseModel):
    message: str = Field(min_length=1)
    machine_id: str = Field(alias="machineId")
    technician_id: str | None = Field(default=None, alias="technicianId")


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "fallbackMessage": FALLBACK_MESSAGE},
    )


@router.post("/")
async def ask_assistant(body: AssistantRequest, session: Session = Depends(get_session)):
    logger.info(f"Assistant request for machine {body.machine_id}")
    try:
        assistant = MaintenanceAssistant(session, provider=get_llm_provider())
        reply = await assistant.answer(body.message, body.machine_id, body.technician_id)
    except MachineNotFoundError as e:
        return _failure(404, str(e))
    except Exception as e:
        logger.exception("Error in assistant request")
        return _failure(500, str(e))

    return {"message": reply.message, "machineInfo": reply.machine_info}
