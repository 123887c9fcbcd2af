"""LLM provider factory used by the maintenance assistant."""

from app.core.config import settings
from app.services.llm.base import BaseLLMProvider


def get_llm_provider() -> BaseLLMProvider:
    """Return the provider selected by MAIA_LLM_PROVIDER."""
    if settings.llm_provider == "gemini":
        from app.services.llm.gemini import GeminiProvider
        return GeminiProvider()
    raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")
