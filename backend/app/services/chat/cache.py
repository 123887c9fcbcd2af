"""Local key-value cache for chat transcripts, keyed per machine."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

MESSAGES_PREFIX = "aiChat.messages."
RESET_PREFIX = "aiChat.reset."
FLOOR_PREFIX = "aiChat.floor."


def messages_key(machine_id: str) -> str:
    return f"{MESSAGES_PREFIX}{machine_id}"


def reset_key(machine_id: str) -> str:
    return f"{RESET_PREFIX}{machine_id}"


def floor_key(machine_id: str) -> str:
    return f"{FLOOR_PREFIX}{machine_id}"


class ChatCache(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryCache(ChatCache):
    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileCache(ChatCache):
    """Cache persisted as a single JSON object on disk."""

    def __init__(self, path: Path):
        self.path = path

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable chat cache {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data))
        tmp.replace(self.path)

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


def request_reset(cache: ChatCache, machine_id: str) -> None:
    """Drop the cached transcript and make the next initialization start fresh."""
    cache.remove(messages_key(machine_id))
    cache.set(reset_key(machine_id), "true")
    logger.info(f"Chat reset requested for machine {machine_id}")
