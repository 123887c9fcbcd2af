"""Answer service clients used by the chat session manager."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.services.assistant import AssistantError, MaintenanceAssistant
from app.services.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)


class AnswerServiceError(Exception):
    def __init__(self, message: str, fallback_message: str | None = None):
        super().__init__(message)
        self.fallback_message = fallback_message


class AnswerService(ABC):
    @abstractmethod
    async def ask(self, message: str, machine_id: str) -> str:
        """Return the assistant's reply. Raises AnswerServiceError on failure."""
        ...


class HttpAnswerService(AnswerService):
    """Calls a remote `/api/assistant` endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        technician_id: str | None = None,
    ):
        self.url = url
        self.technician_id = technician_id
        self.timeout = timeout
        self.headers = headers or {}
        self._transport = transport

    async def ask(self, message: str, machine_id: str) -> str:
        payload = {"message": message, "machineId": machine_id}
        if self.technician_id:
            payload["technicianId"] = self.technician_id
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.post(
                    self.url,
                    headers=self.headers,
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise AnswerServiceError(f"Answer service unreachable: {e}") from e

        try:
            data: dict[str, Any] = resp.json()
        except ValueError:
            data = {}

        if resp.is_error:
            raise AnswerServiceError(
                data.get("error") or f"Answer service returned {resp.status_code}",
                fallback_message=data.get("fallbackMessage"),
            )

        reply = (data.get("message") or "").strip()
        if not reply:
            raise AnswerServiceError("Empty reply from answer service")
        return reply


class LocalAnswerService(AnswerService):
    """Runs the maintenance assistant in-process."""

    def __init__(
        self,
        engine: Engine,
        technician_id: str | None = None,
        provider_factory: Callable[[], BaseLLMProvider] | None = None,
    ):
        self.engine = engine
        self.technician_id = technician_id
        self.provider_factory = provider_factory

    async def ask(self, message: str, machine_id: str) -> str:
        provider = self.provider_factory() if self.provider_factory else None
        with Session(self.engine) as session:
            assistant = MaintenanceAssistant(session, provider=provider)
            try:
                reply = await assistant.answer(message, machine_id, self.technician_id)
            except AssistantError as e:
                raise AnswerServiceError(str(e)) from e
            except Exception as e:
                logger.exception("Maintenance assistant failed")
                raise AnswerServiceError(f"Assistant failure: {e}") from e
        return reply.message
