"""MAIA answer service - builds the maintenance prompt and makes one model call."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Session, select

from app.core.config import settings
from app.models.chat import ChatMessage
from app.models.machine import Machine
from app.services.documents import DocumentError, extract_document_text
from app.services.llm import get_llm_provider
from app.services.llm.base import BaseLLMProvider, Message

logger = logging.getLogger(__name__)

MANUAL_EXCERPT_CHARS = 6000
NOTICE_EXCERPT_CHARS = 1500

FALLBACK_MESSAGE = (
    "Je rencontre actuellement des difficultés techniques. Veuillez réessayer dans "
    "quelques instants ou contacter votre administrateur système."
)

SYSTEM_PROMPT_BASE = """TU ES MAIA (Machine Assistance Intelligence Assistant), une technicienne experte en maintenance industrielle spécialisée sur cette machine.

PERSONNALITÉ:
- Humaine, patiente et pédagogue
- Confiante mais prudente sur la sécurité
- Conversationnelle, adapte son niveau de langage au technicien

INSTRUCTIONS:
1. Si le manuel technique est fourni ci-dessous, UTILISE-LE et cite les sections pertinentes.
2. Si le manuel n'est pas disponible, dis-le clairement et utilise tes connaissances générales.
3. Propose des solutions concrètes, étape par étape, et explique le pourquoi de chaque action.
4. Demande des précisions quand c'est nécessaire.

PRIORITÉS DE SÉCURITÉ:
- Toujours vérifier la sécurité avant toute intervention
- Isoler l'alimentation électrique quand nécessaire
- S'assurer du port des EPI appropriés
- Arrêter immédiatement si un danger est détecté"""


class AssistantError(Exception):
    pass


class MachineNotFoundError(AssistantError):
    pass


@dataclass
class DocumentContext:
    path: str | None
    text: str = ""
    error: str | None = None

    @property
    def usable(self) -> bool:
        return len(self.text) > 50


@dataclass
class AssistantReply:
    message: str
    machine_info: dict[str, Any] = field(default_factory=dict)


def _load_document(path: str | None, max_chars: int) -> DocumentContext:
    if not path:
        return DocumentContext(path=None)
    try:
        return DocumentContext(path=path, text=extract_document_text(path, max_chars))
    except DocumentError as e:
        logger.error(f"Document extraction failed for {path}: {e}")
        return DocumentContext(path=path, error=str(e))


def _document_section(label: str, doc: DocumentContext, excerpt_chars: int) -> str:
    if doc.path is None:
        return f"Aucun(e) {label} disponible."
    if not doc.usable:
        detail = doc.error or "contenu vide"
        return (
            f"{label.capitalize()} référencé(e) ({doc.path}) mais le contenu n'a pas pu être "
            f"extrait ({detail}). Recommande de vérifier l'accès aux documents."
        )
    excerpt = doc.text[:excerpt_chars]
    if len(doc.text) > excerpt_chars:
        excerpt += "\n[...le document continue...]"
    return (
        f"{label.upper()} INTÉGRÉ(E) ({len(doc.text)} caractères):\n"
        f"===== DÉBUT =====\n{excerpt}\n===== FIN DE L'EXTRAIT ====="
    )


def build_system_prompt(machine: Machine, manual: DocumentContext, notice: DocumentContext) -> str:
    return "\n\n".join([
        SYSTEM_PROMPT_BASE,
        "MACHINE ANALYSÉE:\n"
        f"- Nom: {machine.name}\n"
        f"- Numéro de série: {machine.serial_number or 'Non spécifié'}\n"
        f"- Emplacement: {machine.location or 'Non spécifié'}\n"
        f"- Statut: {machine.status}",
        _document_section("manuel technique", manual, MANUAL_EXCERPT_CHARS),
        _document_section("notice technique", notice, NOTICE_EXCERPT_CHARS),
    ])


class MaintenanceAssistant:
    """Answers a technician's question about one machine."""

    def __init__(self, session: Session, provider: BaseLLMProvider | None = None):
        self.session = session
        self.provider = provider or get_llm_provider()

    def _history(self, message: str, machine_id: str, technician_id: str | None) -> list[Message]:
        query = select(ChatMessage).where(ChatMessage.machine_id == machine_id)
        if technician_id:
            query = query.where(ChatMessage.technician_id == technician_id)
        rows = list(self.session.exec(
            query.order_by(ChatMessage.created_at.desc())  # type: ignore
            .limit(settings.history_limit + 1)
        ).all())
        rows.reverse()

        # The question itself is usually stored before it is answered
        if rows and rows[-1].role == "user" and rows[-1].content == message:
            rows.pop()
        rows = rows[-settings.history_limit:] if settings.history_limit else []
        return [Message(role=r.role, content=r.content) for r in rows]

    async def answer(
        self, message: str, machine_id: str, technician_id: str | None = None
    ) -> AssistantReply:
        machine = self.session.get(Machine, machine_id)
        if not machine:
            raise MachineNotFoundError(f"Machine {machine_id} not found")

        # pdf parsing is blocking
        manual = await asyncio.to_thread(_load_document, machine.manual_path, settings.manual_max_chars)
        notice = await asyncio.to_thread(_load_document, machine.notice_path, settings.notice_max_chars)
        logger.info(
            f"Answering for machine {machine.name}: manual={manual.usable} notice={notice.usable}"
        )

        messages = self._history(message, machine_id, technician_id)
        messages.append(Message(role="user", content=message))

        response = await self.provider.chat(
            messages, system=build_system_prompt(machine, manual, notice)
        )
        content = response.content.strip()
        if not content:
            raise AssistantError("Empty response from model")

        return AssistantReply(
            message=content,
            machine_info={
                "name": machine.name,
                "type": machine.type,
                "hasDocuments": bool(machine.manual_path or machine.notice_path),
            },
        )
