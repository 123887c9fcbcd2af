"""Abstract LLM provider interface. All providers must implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Message:
    role: str  # "user" | "assistant"
    content: str


@dataclass
class LLMResponse:
    content: str


class BaseLLMProvider(ABC):
    @abstractmethod
    async def chat(self, messages: list[Message], system: str | None = None) -> LLMResponse:
        """Send messages with an optional system instruction and get a response."""
        ...
