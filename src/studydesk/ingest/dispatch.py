"""Ways to run the successor of a batch.

Each dispatcher receives the successor cursor and the handler that processes
it. The thread pool suits a long-running API process, the HTTP dispatcher
re-enters the service through ``POST /ingest/batches`` (one bounded request
per batch), and the queue dispatcher defers work until it is drained
explicitly, which the CLI and the tests use.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Deque, Optional, Protocol, Set, Tuple

import httpx

from studydesk.settings import Settings

from .models import BatchCursor

LOGGER = logging.getLogger(__name__)

BatchHandler = Callable[[BatchCursor], Any]


class BatchDispatcher(Protocol):
    def dispatch(self, cursor: BatchCursor, handler: BatchHandler) -> None:
        ...


class ThreadPoolBatchDispatcher:
    """Runs successor batches on a bounded worker pool, fire-and-forget."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest-batch")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def dispatch(self, cursor: BatchCursor, handler: BatchHandler) -> None:
        future = self._executor.submit(handler, cursor)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda done: self._on_done(cursor, done))
        LOGGER.info("Dispatched batch for file %s at page %s", cursor.file_id, cursor.current_page)

    def _on_done(self, cursor: BatchCursor, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            # The driver has already recorded the failure on the file row.
            LOGGER.error(
                "Batch for file %s starting at page %s failed: %s",
                cursor.file_id,
                cursor.current_page,
                error,
            )

    def join(self, timeout: Optional[float] = None) -> None:
        """Block until every dispatched batch, including chained ones, finished."""

        while True:
            with self._lock:
                pending = set(self._pending)
            if not pending:
                return
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                raise TimeoutError(f"{len(not_done)} batches still running")

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def close(self) -> None:
        self.shutdown(wait_for_pending=True)


class HTTPBatchDispatcher:
    """Starts the successor as a new invocation of ``POST /ingest/batches``."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._url = url
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def dispatch(self, cursor: BatchCursor, handler: BatchHandler) -> None:
        response = self._client.post(self._url, json=cursor.to_payload())
        response.raise_for_status()
        LOGGER.info(
            "Dispatched batch for file %s at page %s to %s (HTTP %s)",
            cursor.file_id,
            cursor.current_page,
            self._url,
            response.status_code,
        )

    def close(self) -> None:
        self._client.close()


class QueuedBatchDispatcher:
    """Collects successor batches in FIFO order until :meth:`drain` runs them."""

    def __init__(self) -> None:
        self._queue: Deque[Tuple[BatchCursor, BatchHandler]] = deque()

    def dispatch(self, cursor: BatchCursor, handler: BatchHandler) -> None:
        self._queue.append((cursor, handler))

    def __len__(self) -> int:
        return len(self._queue)

    def drain(self) -> int:
        """Run queued batches, including successors they enqueue; return how many ran."""

        processed = 0
        while self._queue:
            cursor, handler = self._queue.popleft()
            handler(cursor)
            processed += 1
        return processed


def build_dispatcher(settings: Settings) -> BatchDispatcher:
    mode = settings.batch_dispatch
    if mode == "thread":
        return ThreadPoolBatchDispatcher(max_workers=max(1, settings.dispatch_workers))
    if mode == "http":
        if not settings.batch_endpoint_url:
            raise ValueError("BATCH_DISPATCH=http requires BATCH_ENDPOINT_URL")
        return HTTPBatchDispatcher(settings.batch_endpoint_url)
    if mode == "queue":
        return QueuedBatchDispatcher()
    raise ValueError(f"Unsupported BATCH_DISPATCH mode: {mode!r}")
