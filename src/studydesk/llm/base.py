"""Common language-model interfaces and errors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

DEFAULT_STUB_RESPONSE = (
    "The language model is not configured, so no synthesized answer is available. "
    "The most relevant passage is [Source 1]."
)


@dataclass(slots=True)
class LLMStatus:
    """Structured status information about the configured generator."""

    configured: bool
    generator: str
    model_name: str
    error: Optional[str] = None


class LLMError(RuntimeError):
    """Base exception raised for language model issues."""


class LLMNotReadyError(LLMError):
    """Raised when the model backend is not configured or unreachable."""


class LLMGenerationError(LLMError):
    """Raised when a completion request fails or returns no content."""


class Generator(ABC):
    """Produces one answer for a system prompt and a user prompt."""

    name: str = "generator"

    @abstractmethod
    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        """Return the model's answer text."""

    @property
    def model_name(self) -> str:
        return "unknown"

    def status(self) -> LLMStatus:
        return LLMStatus(configured=True, generator=self.name, model_name=self.model_name)

    async def aclose(self) -> None:
        """Release resources held for the request."""


class StubGenerator(Generator):
    """Offline generator used when no API key is configured."""

    name = "stub"

    def __init__(self, message: str = DEFAULT_STUB_RESPONSE, *, reason: str | None = None) -> None:
        self._message = message
        self._reason = reason or "OPENAI_API_KEY is not set; answers come from the offline stub."

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        return self._message

    @property
    def model_name(self) -> str:
        return "stub"

    def status(self) -> LLMStatus:
        return LLMStatus(configured=False, generator=self.name, model_name=self.model_name, error=self._reason)
