"""Session scope: acquire the store and HTTP client, expose ingest/search/answer."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, MutableMapping

import httpx

from docrag.chain import RAGChain
from docrag.config import AppConfig
from docrag.embedding.encoder import (
    DEFAULT_OPENAI_MODEL,
    EmbeddingConfig,
    EmbeddingModel,
    EmbeddingProvider,
    OpenAIEmbeddings,
)
from docrag.errors import DocRagError
from docrag.index.indexer import Indexer
from docrag.index.storage import SQLiteVectorStore
from docrag.index.vector_index import VectorIndex
from docrag.ingestion.loader import load_document
from docrag.llm import LanguageModel, OpenAIChatModel
from docrag.models import Document, IndexHandle, RAGAnswer, RetrievalMode, SearchQuery, SearchResult

LOGGER = logging.getLogger(__name__)


class RAGSession:
    """Owns every connection used by one ingestion/query session.

    Usage::

        async with RAGSession(AppConfig.from_env()) as session:
            await session.ingest("https://example.com/report.pdf")
            result = await session.answer("What is X?")

    The SQLite connection and the HTTP client are opened on enter and closed
    on every exit path. ``embedder`` and ``llm`` may be injected; otherwise
    they are built from the config. Passing ``embedder_cache`` shares loaded
    sentence-transformers models between sessions.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        embedder: EmbeddingProvider | None = None,
        llm: LanguageModel | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        embedder_cache: MutableMapping[str, EmbeddingProvider] | None = None,
    ) -> None:
        self.config = config
        self._embedder = embedder
        self._llm = llm
        self._transport = transport
        self._embedder_cache = embedder_cache
        self.store: SQLiteVectorStore | None = None
        self.http: httpx.AsyncClient | None = None
        self.index: VectorIndex | None = None

    async def __aenter__(self) -> "RAGSession":
        db_path = self.config.resolve_db_path(Path.cwd())
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.http = httpx.AsyncClient(
            base_url=self.config.openai_base_url,
            timeout=self.config.request_timeout,
            transport=self._transport,
        )
        try:
            if self._embedder is None:
                self._embedder = await self._load_embedder()
            self.store = await asyncio.to_thread(
                SQLiteVectorStore,
                db_path,
                text_key=self.config.text_key,
                embedding_key=self.config.embedding_key,
            )
            self.index = VectorIndex(
                self.store,
                self._embedder,
                collection=self.config.collection,
                index_name=self.config.index_name,
            )
        except BaseException:
            await self.aclose()
            raise
        LOGGER.debug("Session opened on %s", db_path)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        try:
            if self.index is not None:
                await self.index.close()
        finally:
            if self.store is not None:
                self.store.close()
                self.store = None
            if self.http is not None:
                await self.http.aclose()
                self.http = None

    def _require_http(self) -> httpx.AsyncClient:
        if self.http is None:
            raise DocRagError("Session is not open; use 'async with RAGSession(...)'")
        return self.http

    async def _load_embedder(self) -> EmbeddingProvider:
        """Build the configured embedder, reusing a cached local model by name."""
        # OpenAI embeddings hold this session's HTTP client and are never cached.
        cacheable = self._embedder_cache is not None and self.config.embedding_backend != "openai"
        if cacheable and self.config.model_name in self._embedder_cache:
            return self._embedder_cache[self.config.model_name]
        embedder = await asyncio.to_thread(self._build_embedder)
        if cacheable:
            self._embedder_cache[self.config.model_name] = embedder
        return embedder

    def _build_embedder(self) -> EmbeddingProvider:
        if self.config.embedding_backend == "openai":
            model = self.config.model_name
            if model.startswith("sentence-transformers/"):
                model = DEFAULT_OPENAI_MODEL
            return OpenAIEmbeddings(
                self._require_http(), api_key=self.config.openai_api_key or "", model=model
            )
        return EmbeddingModel(EmbeddingConfig(model_name=self.config.model_name))

    @property
    def llm(self) -> LanguageModel:
        if self._llm is None:
            self._llm = OpenAIChatModel(
                self._require_http(),
                api_key=self.config.openai_api_key or "",
                model=self.config.llm_model,
            )
        return self._llm

    def _require_index(self) -> VectorIndex:
        if self.index is None:
            raise DocRagError("Session is not open; use 'async with RAGSession(...)'")
        return self.index

    async def ingest(
        self,
        source: str | Document,
        *,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        save_to: Path | None = None,
        cancel: asyncio.Event | None = None,
    ) -> IndexHandle:
        """Load, chunk, embed and index a document, then wait for READY."""
        index = self._require_index()
        if isinstance(source, Document):
            document = source
        else:
            document = await load_document(source, self._require_http(), save_to=save_to)

        indexer = Indexer(
            index.embedder,
            index,
            chunk_size=self.config.chunk_size if chunk_size is None else chunk_size,
            chunk_overlap=self.config.chunk_overlap if chunk_overlap is None else chunk_overlap,
            similarity=self.config.similarity,
        )
        return await indexer.ingest(
            document,
            poll_interval=self.config.poll_interval,
            timeout=self.config.build_timeout,
            cancel=cancel,
        )

    async def search(
        self, query: SearchQuery | str, mode: RetrievalMode = RetrievalMode.SIMILARITY
    ) -> List[SearchResult]:
        """Raw retrieval without generation."""
        index = self._require_index()
        if isinstance(query, str):
            query = SearchQuery(
                text=query,
                k=self.config.k,
                fetch_k=self.config.fetch_k,
                lambda_mult=self.config.lambda_mult,
            )
        if RetrievalMode(mode) is RetrievalMode.MMR:
            return await index.max_marginal_relevance_search(query)
        return await index.similarity_search(query)

    def chain(self, *, k: int | None = None, mode: RetrievalMode = RetrievalMode.SIMILARITY) -> RAGChain:
        return RAGChain(
            self._require_index(),
            self.llm,
            k=self.config.k if k is None else k,
            mode=mode,
            fetch_k=self.config.fetch_k,
            lambda_mult=self.config.lambda_mult,
        )

    async def answer(
        self,
        question: str,
        *,
        k: int | None = None,
        mode: RetrievalMode = RetrievalMode.SIMILARITY,
    ) -> RAGAnswer:
        return await self.chain(k=k, mode=mode).answer(question)
