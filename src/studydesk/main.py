import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, TypeVar

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from studydesk import __version__
from studydesk.api.ingest import router as ingest_router
from studydesk.api.oracle import router as oracle_router
from studydesk.embeddings import get_embedding_model
from studydesk.ingest.service import close_ingestion_coordinator
from studydesk.llm import select_generator
from studydesk.logging_config import configure_logging
from studydesk.query.service import close_oracle_service
from studydesk.records import get_record_store
from studydesk.settings import get_settings
from studydesk.vectorstore import VectorStoreUnavailableError, get_vector_store

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    yield
    # Release the HTTP clients and worker pools of the cached services.
    close_ingestion_coordinator()
    close_oracle_service()
    LOGGER.info("Studydesk API %s shut down", __version__)


def create_app() -> FastAPI:
    configure_logging()
    application = FastAPI(title="Studydesk Ingestion & Retrieval API", version=__version__, lifespan=lifespan)
    application.include_router(ingest_router)
    application.include_router(oracle_router)

    def _resolve_dependency(factory: Callable[[], T]) -> T:
        """Resolve a dependency while respecting FastAPI overrides."""

        override: Any | None = application.dependency_overrides.get(factory)
        resolved: Any = override if override is not None else factory
        return resolved()

    @application.get("/healthz", response_class=PlainTextResponse)
    def healthcheck() -> str:
        """Liveness probe used by container orchestrators."""

        return "ok"

    @application.get("/readyz", response_class=PlainTextResponse)
    def readiness_probe() -> str:
        """Readiness probe that ensures the record store, embeddings and vector store respond."""

        errors: list[str] = []

        try:
            _resolve_dependency(get_record_store).list_pending_jobs(limit=1)
        except Exception as exc:
            errors.append(f"record_store_unavailable: {exc}")

        vector = None
        try:
            vector = _resolve_dependency(get_embedding_model).embed_query("__readyz__")
        except Exception as exc:
            errors.append(f"embedding_model_unavailable: {exc}")

        try:
            store = _resolve_dependency(get_vector_store)
            if vector is not None:
                store.query(vector, user_id="__readyz__", k=1)
        except VectorStoreUnavailableError as exc:
            errors.append(f"vector_store_unavailable: {exc}")

        if errors:
            raise HTTPException(status_code=503, detail="; ".join(errors))
        return "ok"

    @application.get("/healthz/model")
    def model_status() -> dict[str, object]:
        """Expose which answer generator a query would use right now."""

        status = select_generator(get_settings()).status()
        payload: dict[str, object] = {
            "configured": status.configured,
            "generator": status.generator,
            "model_name": status.model_name,
        }
        if status.error:
            payload["reason"] = status.error
        return payload

    LOGGER.info("Studydesk API %s initialised", __version__)
    return application


app = create_app()
