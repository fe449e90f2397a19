"""API router for question answering and semantic search over a user's documents."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from studydesk.errors import QueryTimeoutError
from studydesk.llm import LLMError
from studydesk.query.citations import ReconciledSource
from studydesk.query.engine import RetrievalEngine
from studydesk.query.service import OracleService, get_oracle_service, get_retrieval_engine
from studydesk.vectorstore import VectorStoreUnavailableError

from .dependencies import get_user_id

router = APIRouter(tags=["oracle"])


class OracleQuery(BaseModel):
    message: str = Field(..., min_length=1, description="One or more questions, one per line.")
    class_id: Optional[str] = Field(None, description="Restrict retrieval to one class.")


class SourceFile(BaseModel):
    id: str
    name: str
    type: Optional[str] = None
    url: Optional[str] = None


class OracleSource(BaseModel):
    number: int
    file: SourceFile
    pageNumber: int
    content: str


class OracleResponse(BaseModel):
    response: str
    sources: List[OracleSource]


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    class_id: Optional[str] = None
    limit: int = Field(10, ge=1, le=50)


class SearchResult(BaseModel):
    file_id: str
    file_name: str
    folder_id: Optional[str]
    class_id: Optional[str]
    page_number: int
    snippet: str
    distance: float


class SearchResponse(BaseModel):
    results: List[SearchResult]


def _serialise_source(source: ReconciledSource) -> OracleSource:
    return OracleSource(
        number=source.number,
        file=SourceFile(id=source.file_id, name=source.file_name, type=source.file_type, url=source.file_url),
        pageNumber=source.page_number,
        content=source.content,
    )


@router.post("/oracle/query", response_model=OracleResponse)
async def oracle_query(
    request: OracleQuery,
    user_id: str = Depends(get_user_id),
    service: OracleService = Depends(get_oracle_service),
) -> OracleResponse:
    """Answer the questions in ``message`` with globally numbered citations."""

    try:
        result = await service.ask(request.message, user_id=user_id, class_id=request.class_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except VectorStoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except QueryTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except LLMError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return OracleResponse(
        response=result.text,
        sources=[_serialise_source(source) for source in result.sources],
    )


@router.post("/search", response_model=SearchResponse)
def semantic_search(
    request: SearchRequest,
    user_id: str = Depends(get_user_id),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
) -> SearchResponse:
    """Nearest chunks to ``query`` among the caller's documents, without synthesis."""

    try:
        hits = engine.search(request.query, user_id=user_id, class_id=request.class_id, limit=request.limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except VectorStoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return SearchResponse(
        results=[
            SearchResult(
                file_id=hit.file_id,
                file_name=hit.file_name,
                folder_id=hit.folder_id,
                class_id=hit.class_id,
                page_number=hit.page_number,
                snippet=hit.snippet,
                distance=hit.distance,
            )
            for hit in hits
        ]
    )
