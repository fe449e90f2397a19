"""Answer generators: a custom assistant when configured, otherwise generic chat."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from studydesk.settings import Settings

from .base import Generator, LLMGenerationError, StubGenerator
from .client import ChatCompletionsClient

LOGGER = logging.getLogger(__name__)

_TERMINAL_RUN_STATUSES = {"completed", "failed", "cancelled", "expired", "incomplete"}


class GenericChatGenerator(Generator):
    """One chat-completions call per answer."""

    name = "generic_chat"

    def __init__(
        self,
        client: ChatCompletionsClient,
        *,
        model: str,
        max_tokens: int = 1000,
        temperature: float = 0.2,
    ) -> None:
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model_name(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        answer = await self._client.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        if not answer:
            raise LLMGenerationError("Chat completion returned an empty answer")
        return answer


class AssistantBackedGenerator(Generator):
    """Runs a pre-configured assistant on a fresh thread and polls for the result."""

    name = "assistant"

    def __init__(
        self,
        client: ChatCompletionsClient,
        assistant_id: str,
        *,
        poll_attempts: int = 30,
        poll_interval: float = 1.0,
    ) -> None:
        self._client = client
        self.assistant_id = assistant_id
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval

    @property
    def model_name(self) -> str:
        return f"assistant:{self.assistant_id}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        thread_id = await self._client.create_thread()
        await self._client.add_message(thread_id, user_prompt)
        run_id = await self._client.create_run(thread_id, self.assistant_id, instructions=system_prompt)

        status = "queued"
        for attempt in range(1, self._poll_attempts + 1):
            await asyncio.sleep(self._poll_interval)
            status = await self._client.get_run_status(thread_id, run_id)
            LOGGER.debug("Run %s status (attempt %d): %s", run_id, attempt, status)
            if status in _TERMINAL_RUN_STATUSES:
                break

        if status != "completed":
            raise LLMGenerationError(f"Assistant run did not complete. Final status: {status}")
        return await self._client.latest_assistant_message(thread_id)


def select_generator(settings: Settings, client: Optional[ChatCompletionsClient] = None) -> Generator:
    """Pick the generator for one request from the current configuration."""

    if not settings.openai_api_key and client is None:
        return StubGenerator()
    client = client or ChatCompletionsClient.from_settings(settings)
    if settings.assistant_id:
        return AssistantBackedGenerator(
            client,
            settings.assistant_id,
            poll_attempts=settings.assistant_poll_attempts,
            poll_interval=settings.assistant_poll_interval,
        )
    return GenericChatGenerator(
        client,
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )
