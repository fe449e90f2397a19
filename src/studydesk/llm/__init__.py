"""Language-model adapters: chat client, generators and image captioning."""

from .base import (
    DEFAULT_STUB_RESPONSE,
    Generator,
    LLMError,
    LLMGenerationError,
    LLMNotReadyError,
    LLMStatus,
    StubGenerator,
)
from .captioner import VisionCaptioner
from .client import ChatCompletionsClient
from .generators import AssistantBackedGenerator, GenericChatGenerator, select_generator

__all__ = [
    "AssistantBackedGenerator",
    "ChatCompletionsClient",
    "DEFAULT_STUB_RESPONSE",
    "GenericChatGenerator",
    "Generator",
    "LLMError",
    "LLMGenerationError",
    "LLMNotReadyError",
    "LLMStatus",
    "StubGenerator",
    "VisionCaptioner",
    "select_generator",
]
