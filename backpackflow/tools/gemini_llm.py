"""
Google Gemini client used by the LLM nodes.

Wraps google-genai with three calls: plain completion, streamed completion
and schema-constrained (pydantic) completion. Failures raise LLMError so
the calling node's retry policy can act on them.
"""

from functools import lru_cache
from typing import AsyncIterator, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from google import genai
from google.genai import types
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from ..core.config import settings
from ..utils.helpers import strip_code_fences
from ..utils.logger import get_logger


logger = get_logger()

T = TypeVar("T", bound=BaseModel)

Prompt = Union[str, Sequence[BaseMessage]]


class LLMError(Exception):
    """A language-model call failed or returned unusable output."""


class GeminiLLM:
    """
    Async Gemini client.

    Prompts are either a plain string or a langchain-core message list;
    SystemMessages become the system instruction, HumanMessages the
    ``user`` role and AIMessages the ``model`` role.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.api_key = api_key or settings.gemini_api_key
        self.model_name = model or settings.gemini_model
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens

        if self.api_key:
            self.client = genai.Client(api_key=self.api_key)
        else:
            self.client = None
            logger.with_node("LLM").warning("Gemini API key not configured")

    # ==================== Prompt Conversion ====================

    @staticmethod
    def to_contents(prompt: Prompt) -> Tuple[Optional[str], List[types.Content]]:
        """Split a prompt into ``(system_instruction, contents)``."""
        if isinstance(prompt, str):
            return None, [types.Content(role="user", parts=[types.Part(text=prompt)])]

        system_parts, contents = [], []
        for message in prompt:
            text = message.content if isinstance(message.content, str) else str(message.content)
            if isinstance(message, SystemMessage):
                system_parts.append(text)
            elif isinstance(message, AIMessage):
                contents.append(types.Content(role="model", parts=[types.Part(text=text)]))
            elif isinstance(message, HumanMessage):
                contents.append(types.Content(role="user", parts=[types.Part(text=text)]))
            else:
                raise LLMError(f"Unsupported message type: {type(message).__name__}")

        if not contents:
            raise LLMError("Prompt has no user or model messages")

        return ("\n\n".join(system_parts) or None), contents

    def _config(
        self,
        system_instruction: Optional[str],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **extra,
    ) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self.temperature if temperature is None else temperature,
            max_output_tokens=max_tokens or self.max_tokens,
            **extra,
        )

    def _require_client(self):
        if self.client is None:
            raise LLMError("Gemini API key not configured (set BACKPACKFLOW_GEMINI_API_KEY)")
        return self.client

    # ==================== Calls ====================

    async def complete(
        self,
        prompt: Prompt,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return the model's full reply as text."""
        client = self._require_client()
        system_instruction, contents = self.to_contents(prompt)

        try:
            response = await client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=self._config(system or system_instruction, temperature, max_tokens),
            )
        except Exception as e:
            raise LLMError(f"Gemini call failed: {e}") from e

        text = response.text
        if not text:
            raise LLMError("Gemini returned an empty response")
        return text.strip()

    async def stream(
        self,
        prompt: Prompt,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Yield reply text chunks as the model produces them."""
        client = self._require_client()
        system_instruction, contents = self.to_contents(prompt)

        try:
            chunks = await client.aio.models.generate_content_stream(
                model=self.model_name,
                contents=contents,
                config=self._config(system or system_instruction, temperature, max_tokens),
            )
            async for chunk in chunks:
                if chunk.text:
                    yield chunk.text
        except Exception as e:
            raise LLMError(f"Gemini stream failed: {e}") from e

    async def structured(
        self,
        prompt: Prompt,
        schema: Type[T],
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> T:
        """Return the reply parsed and validated as ``schema``."""
        client = self._require_client()
        system_instruction, contents = self.to_contents(prompt)

        try:
            response = await client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=self._config(
                    system or system_instruction,
                    temperature,
                    max_tokens,
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
        except Exception as e:
            raise LLMError(f"Gemini call failed: {e}") from e

        if isinstance(response.parsed, schema):
            return response.parsed

        try:
            return schema.model_validate_json(strip_code_fences(response.text or ""))
        except ValidationError as e:
            raise LLMError(f"Response did not match {schema.__name__}: {e}") from e


# ==================== Cached Instance ====================

@lru_cache()
def get_llm() -> GeminiLLM:
    """Get cached Gemini client instance."""
    return GeminiLLM()
