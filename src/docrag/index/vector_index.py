"""Async vector index over one SQLite collection."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np

from docrag.embedding.encoder import EmbeddingProvider
from docrag.errors import IndexNotFoundError, IndexNotReadyError, InvalidConfigError
from docrag.index.search import maximal_marginal_relevance, similarity_matrix, top_k_indices
from docrag.index.storage import SQLiteVectorStore
from docrag.models import (
    Chunk,
    EmbeddedChunk,
    IndexDefinition,
    IndexStatus,
    MetadataFilter,
    SearchQuery,
    SearchResult,
)

LOGGER = logging.getLogger(__name__)


def _matches(metadata: Mapping[str, Any], flt: MetadataFilter | None) -> bool:
    if flt is None:
        return True
    if callable(flt):
        return bool(flt(metadata))
    return all(metadata.get(key) == value for key, value in flt.items())


class VectorIndex:
    """Insertion, index lifecycle and search for one named index on a collection.

    Building an index runs as a background task; callers wait for it with
    `docrag.index.sync.await_ready` before searching.
    """

    def __init__(
        self,
        store: SQLiteVectorStore,
        embedder: EmbeddingProvider,
        *,
        collection: str = "documents",
        index_name: str = "vector_index",
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.collection = collection
        self.index_name = index_name
        self._build_tasks: set[asyncio.Task] = set()

    async def insert_all(self, embedded_chunks: Sequence[EmbeddedChunk]) -> int:
        """Append records; repeated calls append duplicates."""
        if not embedded_chunks:
            return 0
        inserted = await asyncio.to_thread(self.store.insert_records, self.collection, embedded_chunks)
        LOGGER.info("Inserted %d records into collection %s", inserted, self.collection)
        return inserted

    async def create_index(self, definition: IndexDefinition) -> None:
        """Declare the index and start building it in the background."""
        await asyncio.to_thread(self.store.create_search_index, self.collection, definition)
        self.index_name = definition.name
        LOGGER.info("Starting index build for %s on %s", definition.name, self.collection)
        task = asyncio.create_task(self._build(definition), name=f"build-{definition.name}")
        self._build_tasks.add(task)
        task.add_done_callback(self._build_tasks.discard)

    async def _build(self, definition: IndexDefinition) -> None:
        await asyncio.to_thread(
            self.store.set_index_status, self.collection, definition.name, IndexStatus.BUILDING
        )
        try:
            records = await asyncio.to_thread(self.store.load_records, self.collection)
            for record in records:
                size = record[self.store.embedding_key].shape[0]
                if size != definition.num_dimensions:
                    raise ValueError(
                        f"Record {record['id']} has {size} dimensions, "
                        f"index expects {definition.num_dimensions}"
                    )
        except Exception as exc:
            LOGGER.error("Index build for %s failed: %s", definition.name, exc)
            await asyncio.to_thread(
                self.store.set_index_status,
                self.collection,
                definition.name,
                IndexStatus.FAILED,
                str(exc),
            )
            return

        await asyncio.to_thread(
            self.store.set_index_status, self.collection, definition.name, IndexStatus.READY
        )
        LOGGER.info("Index %s is READY (%d vectors)", definition.name, len(records))

    async def describe(self) -> Dict[str, Any]:
        rows = await asyncio.to_thread(
            self.store.list_search_indexes, self.collection, self.index_name
        )
        if not rows:
            raise IndexNotFoundError(self.collection, self.index_name)
        return rows[0]

    async def status(self) -> IndexStatus:
        return IndexStatus.from_backend((await self.describe())["status"])

    async def close(self) -> None:
        """Cancel build tasks still in flight."""
        for task in list(self._build_tasks):
            task.cancel()
        if self._build_tasks:
            await asyncio.gather(*self._build_tasks, return_exceptions=True)

    async def _ready_definition(self) -> IndexDefinition:
        description = await self.describe()
        status = IndexStatus.from_backend(description["status"])
        if status is not IndexStatus.READY:
            raise IndexNotReadyError(
                f"Index {self.index_name!r} is {status.value}; wait for READY before searching"
            )
        return IndexDefinition.from_dict(description["latestDefinition"])

    async def _score(self, query: SearchQuery) -> tuple[List[Chunk], np.ndarray, np.ndarray, str]:
        """Embed the query and score every record that passes the filter."""
        definition = await self._ready_definition()
        query_vector = await self.embedder.embed_query(query.text)
        records = await asyncio.to_thread(self.store.load_records, self.collection)

        chunks: List[Chunk] = []
        vectors: List[np.ndarray] = []
        for record in records:
            if not _matches(record["metadata"], query.filter):
                continue
            vector = record[self.store.embedding_key]
            if vector.shape[0] != definition.num_dimensions:
                raise InvalidConfigError(
                    f"Record {record['id']} has {vector.shape[0]} dimensions, "
                    f"index {definition.name!r} expects {definition.num_dimensions}"
                )
            chunks.append(
                Chunk(
                    text=record[self.store.text_key],
                    start=record["start"],
                    end=record["end"],
                    metadata=record["metadata"],
                )
            )
            vectors.append(vector)

        if not chunks:
            empty = np.zeros((0, definition.num_dimensions), dtype="float32")
            return [], empty, np.zeros(0, dtype="float32"), definition.similarity

        matrix = np.vstack(vectors)
        scores = similarity_matrix(query_vector, matrix, definition.similarity)[0]
        return chunks, matrix, scores, definition.similarity

    async def similarity_search(self, query: SearchQuery) -> List[SearchResult]:
        """Top ``query.k`` records by similarity, highest first."""
        if query.k <= 0:
            raise InvalidConfigError(f"k must be positive, got {query.k}")
        chunks, _, scores, _ = await self._score(query)
        return [
            SearchResult(chunk=chunks[i], score=float(scores[i]))
            for i in top_k_indices(scores, query.k)
        ]

    async def max_marginal_relevance_search(self, query: SearchQuery) -> List[SearchResult]:
        """Diversified top ``query.k`` chosen from the ``query.fetch_k`` nearest records."""
        if query.k <= 0:
            raise InvalidConfigError(f"k must be positive, got {query.k}")
        if query.fetch_k < query.k:
            raise InvalidConfigError(
                f"fetch_k ({query.fetch_k}) must be greater than or equal to k ({query.k})"
            )
        if not 0.0 <= query.lambda_mult <= 1.0:
            raise InvalidConfigError(f"lambda_mult must be within [0, 1], got {query.lambda_mult}")

        chunks, matrix, scores, metric = await self._score(query)
        candidates = top_k_indices(scores, query.fetch_k)
        if not candidates:
            return []

        selected = maximal_marginal_relevance(
            scores[candidates],
            matrix[candidates],
            k=query.k,
            lambda_mult=query.lambda_mult,
            metric=metric,
        )
        return [
            SearchResult(chunk=chunks[candidates[pos]], score=float(scores[candidates[pos]]))
            for pos in selected
        ]
