"""Image captioning through a vision-capable chat model."""

from __future__ import annotations

import base64
import logging
import time
from typing import Optional

import httpx

from studydesk.settings import Settings

from .base import LLMGenerationError
from .client import MAX_RETRIES, RETRYABLE_STATUS, _backoff, _raise_for_error

LOGGER = logging.getLogger(__name__)

CAPTION_PROMPT = (
    "Describe this image from a course document so a student could find it by searching. "
    "Transcribe any visible text, equations or labels, and summarise charts or diagrams. "
    "Answer in plain prose without preamble."
)


class VisionCaptioner:
    """Synchronous captioner used inside ingestion batches."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        max_tokens: int = 300,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["VisionCaptioner"]:
        """Return a captioner, or ``None`` when captioning is disabled or unconfigured."""

        if not settings.caption_images or not settings.openai_api_key:
            return None
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.openai_api_key,
            model=settings.vision_model,
            timeout=settings.llm_timeout_seconds,
        )

    def describe(self, image: bytes, mime_type: str, *, context: str = "") -> str:
        encoded = base64.b64encode(image).decode("ascii")
        prompt = f"{CAPTION_PROMPT}\n{context}".strip()
        payload = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                    ],
                }
            ],
        }
        data = self._post("/chat/completions", payload)
        try:
            return str(data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMGenerationError("Caption response has no message content") from exc

    def _post(self, path: str, payload: dict) -> dict:
        last_exc: Optional[Exception] = None
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = self._client.post(path, json=payload)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
                delay = _backoff(attempt)
                LOGGER.warning("Caption request failed (%s), attempt %d", exc, attempt + 1)
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    _raise_for_error(resp)
                    return resp.json()
                last_exc = LLMGenerationError(f"Caption API returned HTTP {resp.status_code}")
                delay = _backoff(attempt, resp.headers.get("retry-after"))
            if attempt < MAX_RETRIES:
                time.sleep(delay)
        raise LLMGenerationError("Caption request failed after retries") from last_exc

    def close(self) -> None:
        self._client.close()
