"""Notify the preview-generation collaborator once a file is fully indexed."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Protocol

import httpx

from studydesk.records import RecordStore
from studydesk.settings import Settings

LOGGER = logging.getLogger(__name__)


class PreviewRequester(Protocol):
    def request(self, file_id: str) -> None:
        ...


class QueuePreviewRequester:
    """Inserts a pending row into ``preview_queue`` for the preview worker."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    def request(self, file_id: str) -> None:
        request_id = self._records.enqueue_preview(file_id)
        LOGGER.info("Queued preview generation %s for file %s", request_id, file_id)


class HTTPPreviewRequester:
    """Posts ``{file_id}`` to the preview endpoint without waiting for the result."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._url = url
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="preview")

    def request(self, file_id: str) -> None:
        future = self._executor.submit(self._post, file_id)
        future.add_done_callback(lambda done: self._log_outcome(file_id, done))

    def _post(self, file_id: str) -> int:
        response = self._client.post(self._url, json={"file_id": file_id})
        response.raise_for_status()
        return response.status_code

    @staticmethod
    def _log_outcome(file_id: str, future: Future) -> None:
        error = future.exception()
        if error is not None:
            LOGGER.warning("Preview request for file %s failed: %s", file_id, error)
        else:
            LOGGER.info("Preview requested for file %s (HTTP %s)", file_id, future.result())

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._client.close()


def build_preview_requester(settings: Settings, records: RecordStore) -> PreviewRequester:
    if settings.preview_endpoint_url:
        return HTTPPreviewRequester(settings.preview_endpoint_url)
    return QueuePreviewRequester(records)
