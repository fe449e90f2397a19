"""Structured lifecycle events for ingestion, retrieval and inference."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

LOGGER = logging.getLogger("studydesk.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__)).strip()


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    file_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the shared schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if file_id:
        event["file_id"] = file_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    file_id: str | None,
    job_id: str | None = None,
    file_name: str | None = None,
    mime_type: str | None = None,
    size_bytes: int | None = None,
    pages: int | None = None,
    chunks: int | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "job_id": job_id,
        "file": file_name,
        "mime_type": mime_type,
        "size_bytes": size_bytes,
        "pages": pages,
        "chunks": chunks,
    }
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        file_id=file_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_batch_event(
    step: str,
    *,
    file_id: str,
    start_page: int,
    end_page: int,
    total_pages: int,
    chunks: int | None = None,
    images: int | None = None,
    duration_ms: float | None = None,
) -> None:
    details = {
        "start_page": start_page,
        "end_page": end_page,
        "total_pages": total_pages,
        "chunks": chunks,
        "images": images,
    }
    log_event(LOGGER, step, file_id=file_id, duration_ms=duration_ms, details=details)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    file_id: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        file_id=file_id,
        details=details,
        exc=error,
    )


def emit_embeddings_event(
    *, model: str, count: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    level = "error" if errors else "info"
    log_event(LOGGER, "embeddings.compute", level=level, duration_ms=duration_ms, details=details)


def emit_vectorstore_event(
    step: str,
    *,
    collection: str,
    count: int,
    backend: str,
    file_id: str | None = None,
    error: BaseException | None = None,
) -> None:
    details = {"collection": collection, "count": count, "backend": backend}
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, file_id=file_id, details=details, exc=error)


def emit_retriever_event(
    *,
    req_id: str | None,
    query: str,
    top_k: int,
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "top_k": top_k,
        "hits": len(results),
        "results": results,
    }
    log_event(LOGGER, "retriever.search", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_inference_request(
    *,
    req_id: str | None,
    generator: str,
    model: str,
    prompt_len: int,
    max_tokens: int | None,
    sources: Iterable[str],
) -> None:
    details = {
        "generator": generator,
        "model": model,
        "prompt_len": prompt_len,
        "max_tokens": max_tokens,
        "sources": list(sources),
    }
    log_event(LOGGER, "inference.request", req_id=req_id, details=details)


def emit_inference_result(
    *,
    req_id: str | None,
    generator: str,
    duration_ms: float,
    answer_preview: str,
    fallback: bool,
    error: BaseException | None = None,
) -> None:
    details = {
        "generator": generator,
        "answer_preview": answer_preview[:120],
        "fallback": fallback,
    }
    level = "error" if error else "info"
    log_event(
        LOGGER,
        "inference.result",
        level=level,
        req_id=req_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(time.perf_counter() - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_batch_event",
    "emit_embeddings_event",
    "emit_exception",
    "emit_inference_request",
    "emit_inference_result",
    "emit_ingest_event",
    "emit_retriever_event",
    "emit_vectorstore_event",
    "log_event",
    "traced_duration",
]
