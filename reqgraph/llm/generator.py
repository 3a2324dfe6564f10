"""
Text generation client.

Talks to any OpenAI-compatible chat completion endpoint. Ollama exposes
one under ``/v1``, which is the default target.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import openai

from reqgraph.config import Settings, get_settings
from reqgraph.models import GenerationResponse
from reqgraph.utils.errors import GenerationError, ModelNotAvailableError
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)


class TextGenerator(ABC):
    """A model that turns a prompt into free-form text."""

    model_name: str

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        context: Optional[dict[str, Any]] = None,
        options: Optional[dict[str, Any]] = None,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> GenerationResponse:
        """
        Generate a completion.

        Args:
            prompt: User prompt
            context: Extra data appended to the prompt as JSON
            options: ``temperature`` and ``max_tokens`` overrides
            system_prompt: Optional system message
            model: Model override for this call

        Raises:
            GenerationError: If the call fails or times out
            ModelNotAvailableError: If the model is not installed
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass


class OpenAICompatibleGenerator(TextGenerator):
    """
    Chat completion generator backed by ``openai.AsyncOpenAI``.

    When ``serialize_calls`` is set, calls made through one instance run
    one at a time. Waiting for a turn is bounded by ``lock_timeout``.
    """

    def __init__(
        self,
        model_name: str = "llama3.2",
        base_url: Optional[str] = None,
        api_key: str = "ollama",
        timeout: float = 300.0,
        temperature: float = 0.3,
        max_tokens: int = 32768,
        serialize_calls: bool = True,
        lock_timeout: float = 600.0,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self.model_name = model_name
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.serialize_calls = serialize_calls
        self.lock_timeout = lock_timeout
        self._llm_client = client
        self._lock = asyncio.Lock()

    def _ensure_llm_client(self) -> openai.AsyncOpenAI:
        """Ensure the API client is initialized."""
        if self._llm_client is None:
            try:
                self._llm_client = openai.AsyncOpenAI(
                    base_url=self.base_url,
                    api_key=self.api_key,
                    timeout=self.timeout,
                )
            except openai.OpenAIError as e:
                raise GenerationError(f"Failed to initialize generation client: {str(e)}")
        return self._llm_client

    @staticmethod
    def build_prompt(prompt: str, context: Optional[dict[str, Any]]) -> str:
        if not context:
            return prompt
        return f"{prompt}\n\nContext:\n{json.dumps(context, indent=2, ensure_ascii=False, default=str)}"

    async def generate(
        self,
        prompt: str,
        context: Optional[dict[str, Any]] = None,
        options: Optional[dict[str, Any]] = None,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> GenerationResponse:
        if not self.serialize_calls:
            return await self._complete(prompt, context, options, system_prompt, model)

        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError:
            raise GenerationError(
                "Timed out waiting for the generation backend",
                {"lock_timeout": self.lock_timeout},
            )
        try:
            return await self._complete(prompt, context, options, system_prompt, model)
        finally:
            self._lock.release()

    async def _complete(
        self,
        prompt: str,
        context: Optional[dict[str, Any]],
        options: Optional[dict[str, Any]],
        system_prompt: Optional[str],
        model: Optional[str],
    ) -> GenerationResponse:
        client = self._ensure_llm_client()
        options = options or {}
        model = model or self.model_name

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": self.build_prompt(prompt, context)})

        start_time = time.perf_counter()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=options.get("temperature", self.temperature),
                max_tokens=options.get("max_tokens", self.max_tokens),
            )
        except openai.NotFoundError:
            raise ModelNotAvailableError(model, await self.list_models(), kind="Generation")
        except openai.APITimeoutError as e:
            raise GenerationError(f"Generation timed out after {self.timeout}s", {"model": model}) from e
        except openai.APIError as e:
            logger.error(f"Generation failed: {e}")
            raise GenerationError(f"Generation failed: {str(e)}", {"model": model}) from e

        duration = time.perf_counter() - start_time
        text = response.choices[0].message.content if response.choices else None
        usage = response.usage

        logger.debug(
            "Generation completed",
            extra={"model": model, "duration_seconds": duration, "response_length": len(text or "")},
        )
        return GenerationResponse(
            text=text or "",
            model=model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            duration_seconds=duration,
        )

    async def list_models(self) -> list[str]:
        """Names of models the endpoint serves; empty if it cannot tell."""
        client = self._ensure_llm_client()
        try:
            page = await client.models.list()
        except openai.APIError as e:
            logger.debug(f"Could not list models: {e}")
            return []
        return [item.id for item in page.data]

    async def close(self) -> None:
        if self._llm_client is not None:
            await self._llm_client.close()
            self._llm_client = None


def create_text_generator(settings: Optional[Settings] = None) -> OpenAICompatibleGenerator:
    """Create a generator from settings."""
    settings = settings or get_settings()
    return OpenAICompatibleGenerator(
        model_name=settings.llm_model,
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout=settings.llm_timeout,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        serialize_calls=settings.llm_serialize_calls,
        lock_timeout=settings.llm_lock_timeout,
    )
