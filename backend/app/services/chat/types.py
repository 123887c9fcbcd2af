"""Transcript message type shared by the chat session components."""

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

TEMP_PREFIX = "temp-"

USER = "user"
ASSISTANT = "assistant"

SENDING = "sending"
SENT = "sent"
ERROR = "error"

_last_temp_ms = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_temp_id() -> str:
    """Return a `temp-<epoch ms>` id, strictly increasing within the process."""
    global _last_temp_ms
    now_ms = int(time.time() * 1000)
    if now_ms <= _last_temp_ms:
        now_ms = _last_temp_ms + 1
    _last_temp_ms = now_ms
    return f"{TEMP_PREFIX}{now_ms}"


@dataclass(frozen=True)
class Message:
    id: str
    role: str  # "user" | "assistant"
    content: str
    machine_id: str
    created_at: datetime = field(default_factory=utcnow)
    status: str | None = None  # "sending" | "sent" | "error", local messages only

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_PREFIX)

    def with_status(self, status: str | None) -> "Message":
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "machineId": self.machine_id,
            "createdAt": self.created_at.isoformat(),
        }
        if self.status is not None:
            data["status"] = self.status
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Build a message from its cached form. Raises KeyError/ValueError on bad input."""
        role = data["role"]
        if role not in (USER, ASSISTANT):
            raise ValueError(f"Unknown role: {role!r}")
        return cls(
            id=str(data["id"]),
            role=role,
            content=str(data["content"]),
            machine_id=str(data["machineId"]),
            created_at=as_utc(datetime.fromisoformat(data["createdAt"])),
            status=data.get("status"),
        )
