"""Document ingestion pipeline: chunk, embed, insert, build, wait."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import List

from docrag.embedding.encoder import EmbeddingProvider
from docrag.errors import (
    EmbeddingProviderError,
    IndexAlreadyExistsError,
    IndexNotFoundError,
    InvalidConfigError,
)
from docrag.index.sync import await_ready
from docrag.index.vector_index import VectorIndex
from docrag.models import Chunk, Document, EmbeddedChunk, IndexDefinition, IndexHandle
from docrag.utils.text import split_document

LOGGER = logging.getLogger(__name__)


class Indexer:
    """Coordinates document ingestion into one vector index."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndex,
        *,
        chunk_size: int = 200,
        chunk_overlap: int = 20,
        similarity: str = "cosine",
        batch_size: int = 32,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.similarity = similarity
        self.batch_size = batch_size

    async def embed_chunks(self, chunks: List[Chunk]) -> List[EmbeddedChunk]:
        embedded: List[EmbeddedChunk] = []
        for i in range(0, len(chunks), self.batch_size):
            batch = chunks[i : i + self.batch_size]
            vectors = await self.embedder.embed([c.text for c in batch])
            if len(vectors) != len(batch):
                raise EmbeddingProviderError(
                    f"Provider returned {len(vectors)} vectors for {len(batch)} texts"
                )
            embedded.extend(
                EmbeddedChunk(chunk=chunk, vector=vector, id=uuid.uuid4().hex)
                for chunk, vector in zip(batch, vectors)
            )
        return embedded

    async def _existing_definition(self) -> IndexDefinition | None:
        try:
            description = await self.index.describe()
        except IndexNotFoundError:
            return None
        return IndexDefinition.from_dict(description["latestDefinition"])

    async def ingest(
        self,
        document: Document,
        *,
        poll_interval: float = 1.0,
        timeout: float = 60.0,
        cancel: asyncio.Event | None = None,
    ) -> IndexHandle:
        """Index a document and block until its search index is READY.

        Records are always appended; ingesting the same document twice yields
        duplicate search hits. An existing index is reused only when its
        dimensions and similarity match the current embedder, otherwise
        nothing is written.
        """
        chunks = split_document(
            document, chunk_size=self.chunk_size, chunk_overlap=self.chunk_overlap
        )
        LOGGER.info("Split %s into %d chunks", document.source, len(chunks))

        definition = IndexDefinition(
            name=self.index.index_name,
            path=self.index.store.embedding_key,
            num_dimensions=self.embedder.dimension,
            similarity=self.similarity,
        )
        existing = await self._existing_definition()
        if existing is not None and (
            existing.num_dimensions != definition.num_dimensions
            or existing.similarity != definition.similarity
        ):
            raise InvalidConfigError(
                f"Index {existing.name!r} expects {existing.num_dimensions} dimensions "
                f"({existing.similarity}), got {definition.num_dimensions} ({definition.similarity}); "
                "use the embedding model the collection was built with"
            )

        embedded = await self.embed_chunks(chunks)
        inserted = await self.index.insert_all(embedded)

        if existing is None:
            try:
                await self.index.create_index(definition)
            except IndexAlreadyExistsError:
                LOGGER.info("Index %s already exists, reusing it", definition.name)
        else:
            LOGGER.info("Index %s already exists, reusing it", definition.name)
            definition = existing

        await await_ready(self.index, poll_interval, timeout, cancel=cancel)
        return IndexHandle(
            collection=self.index.collection,
            name=definition.name,
            definition=definition,
            inserted=inserted,
        )
