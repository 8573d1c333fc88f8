"""FastAPI application exposing ingest, search and answer."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from docrag.config import AppConfig
from docrag.embedding.encoder import EmbeddingProvider
from docrag.errors import (
    DocRagError,
    DocumentFetchError,
    EmbeddingProviderError,
    GenerationError,
    IndexBuildTimeoutError,
    IndexNotFoundError,
    IndexNotReadyError,
    InvalidConfigError,
)
from docrag.models import RetrievalMode, SearchQuery, SearchResult
from docrag.session import RAGSession

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="docrag", version="0.1.0")

# Loaded sentence-transformers models, keyed by model name, shared across requests.
_EMBEDDERS: Dict[str, EmbeddingProvider] = {}


class IngestPayload(BaseModel):
    source: str
    db: Path | None = None
    chunk_size: int | None = None
    chunk_overlap: int | None = None


class SearchPayload(BaseModel):
    query: str
    db: Path | None = None
    mode: RetrievalMode = RetrievalMode.SIMILARITY
    k: int = 3
    fetch_k: int = 10
    lambda_mult: float = Field(0.5, ge=0.0, le=1.0)


class AnswerPayload(BaseModel):
    question: str
    db: Path | None = None
    mode: RetrievalMode = RetrievalMode.SIMILARITY
    k: int | None = None


def _config(db: Path | None) -> AppConfig:
    return AppConfig.from_env(db_path=db)


def _open_session(config: AppConfig) -> RAGSession:
    return RAGSession(config, embedder_cache=_EMBEDDERS)


def _require_db(config: AppConfig) -> None:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise HTTPException(
            status_code=404,
            detail=f"Database not found at {resolved_db}. Ingest a document first.",
        )


def _to_http_error(exc: DocRagError) -> HTTPException:
    if isinstance(exc, InvalidConfigError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, IndexNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, IndexNotReadyError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, IndexBuildTimeoutError):
        return HTTPException(status_code=504, detail=str(exc))
    if isinstance(exc, (EmbeddingProviderError, GenerationError, DocumentFetchError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _serialize(results: List[SearchResult]) -> List[dict[str, Any]]:
    return [
        {
            "text": r.chunk.text,
            "score": r.score,
            "start": r.chunk.start,
            "end": r.chunk.end,
            "metadata": r.chunk.metadata,
        }
        for r in results
    ]


@app.post("/ingest")
async def ingest_document(payload: IngestPayload) -> dict[str, Any]:
    source = payload.source.strip()
    if not source:
        raise HTTPException(status_code=400, detail="No source provided")

    config = _config(payload.db)
    try:
        async with _open_session(config) as session:
            handle = await session.ingest(
                source, chunk_size=payload.chunk_size, chunk_overlap=payload.chunk_overlap
            )
    except DocRagError as exc:
        LOGGER.error("Ingestion of %s failed: %s", source, exc)
        raise _to_http_error(exc) from exc

    return {
        "status": "ok",
        "collection": handle.collection,
        "index": handle.name,
        "inserted": handle.inserted,
    }


@app.post("/search")
async def search_documents(payload: SearchPayload) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    k = max(1, min(payload.k, 50))
    fetch_k = max(payload.fetch_k, k)

    config = _config(payload.db)
    _require_db(config)
    try:
        async with _open_session(config) as session:
            results = await session.search(
                SearchQuery(text=query, k=k, fetch_k=fetch_k, lambda_mult=payload.lambda_mult),
                payload.mode,
            )
    except DocRagError as exc:
        raise _to_http_error(exc) from exc
    return {"results": _serialize(results)}


@app.post("/answer")
async def answer_question(payload: AnswerPayload) -> dict[str, Any]:
    question = payload.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Empty question")

    config = _config(payload.db)
    _require_db(config)
    try:
        async with _open_session(config) as session:
            result = await session.answer(question, k=payload.k, mode=payload.mode)
    except DocRagError as exc:
        LOGGER.error("Answering %r failed: %s", question, exc)
        raise _to_http_error(exc) from exc

    return {
        "question": result.question,
        "answer": result.answer,
        "context": [chunk.text for chunk in result.context_used],
    }
