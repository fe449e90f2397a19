"""HTTP client for an OpenAI-compatible chat, vision and assistants API.

A single ``httpx.AsyncClient`` is reused for connection pooling. Requests are
retried with exponential backoff and jitter on 429/5xx responses and timeouts;
other HTTP errors are raised immediately as :class:`LLMGenerationError`.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Dict, List, Optional

import httpx

from studydesk.settings import Settings

from .base import LLMGenerationError, LLMNotReadyError

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 16.0


def _backoff(attempt: int, retry_after: Optional[str] = None) -> float:
    if retry_after:
        try:
            return min(MAX_DELAY, float(retry_after))
        except ValueError:
            pass
    return min(MAX_DELAY, BASE_DELAY * (2**attempt) + random.uniform(0, 1))


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.status_code >= 400:
        LOGGER.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
        raise LLMGenerationError(f"Language model API returned HTTP {resp.status_code}")


class ChatCompletionsClient:
    """Async access to ``/chat/completions`` and the assistants endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        if not api_key:
            raise LLMNotReadyError("An API key is required for the chat completions client")
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport
        self._max_retries = max_retries
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatCompletionsClient":
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.openai_api_key or "",
            timeout=settings.llm_timeout_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        client = self._get_client()
        last_exc: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            try:
                resp = await client.request(method, path, **kwargs)
            except httpx.TimeoutException as exc:
                last_exc = exc
                delay = _backoff(attempt)
                LOGGER.warning(
                    "LLM timeout on %s (attempt %d/%d), retrying in %.1fs",
                    path, attempt + 1, self._max_retries + 1, delay,
                )
            except httpx.TransportError as exc:
                last_exc = exc
                delay = _backoff(attempt)
                LOGGER.warning("LLM transport error on %s: %s", path, exc)
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    _raise_for_error(resp)
                    return resp.json()
                last_exc = LLMGenerationError(f"Language model API returned HTTP {resp.status_code}")
                delay = _backoff(attempt, resp.headers.get("retry-after"))
                LOGGER.warning(
                    "LLM %d on %s (attempt %d/%d), retrying in %.1fs",
                    resp.status_code, path, attempt + 1, self._max_retries + 1, delay,
                )
            if attempt < self._max_retries:
                await asyncio.sleep(delay)
        raise LLMGenerationError(f"Language model request to {path} failed after retries") from last_exc

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        started = time.perf_counter()
        data = await self._request(
            "POST",
            "/chat/completions",
            json={
                "model": model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMGenerationError("Chat completion response has no message content") from exc
        LOGGER.debug("chat completion in %.0fms", (time.perf_counter() - started) * 1000.0)
        return (content or "").strip()

    # Assistants API -------------------------------------------------------

    _ASSISTANTS_HEADERS = {"OpenAI-Beta": "assistants=v2"}

    async def create_thread(self) -> str:
        data = await self._request("POST", "/threads", json={}, headers=self._ASSISTANTS_HEADERS)
        return str(data["id"])

    async def add_message(self, thread_id: str, content: str) -> None:
        await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json={"role": "user", "content": content},
            headers=self._ASSISTANTS_HEADERS,
        )

    async def create_run(self, thread_id: str, assistant_id: str, *, instructions: str) -> str:
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json={"assistant_id": assistant_id, "instructions": instructions},
            headers=self._ASSISTANTS_HEADERS,
        )
        return str(data["id"])

    async def get_run_status(self, thread_id: str, run_id: str) -> str:
        data = await self._request(
            "GET", f"/threads/{thread_id}/runs/{run_id}", headers=self._ASSISTANTS_HEADERS
        )
        return str(data.get("status", ""))

    async def latest_assistant_message(self, thread_id: str) -> str:
        data = await self._request(
            "GET", f"/threads/{thread_id}/messages", headers=self._ASSISTANTS_HEADERS
        )
        for message in data.get("data", []):
            if message.get("role") != "assistant":
                continue
            for part in message.get("content", []):
                if part.get("type") == "text":
                    return str(part["text"]["value"]).strip()
        raise LLMGenerationError("No assistant response found in thread")
