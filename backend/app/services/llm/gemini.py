"""Google Gemini LLM provider."""

from google import genai
from google.genai import types

from app.core.config import settings
from app.services.llm.base import BaseLLMProvider, LLMResponse, Message


class GeminiProvider(BaseLLMProvider):
    def __init__(self):
        self.client = genai.Client(api_key=settings.gemini_api_key)
        self.model = settings.gemini_model

    async def chat(self, messages: list[Message], system: str | None = None) -> LLMResponse:
        contents = [
            types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[types.Part(text=m.content)],
            )
            for m in messages
        ]
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_tokens,
        )
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=config,
        )
        return LLMResponse(content=response.text or "")
