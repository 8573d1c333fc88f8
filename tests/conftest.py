"""Shared fixtures: deterministic embedders and a scripted language model."""

from __future__ import annotations

import hashlib
import re
import uuid
from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np
import pytest
import pytest_asyncio

from docrag.index.storage import SQLiteVectorStore
from docrag.index.sync import await_ready
from docrag.index.vector_index import VectorIndex
from docrag.models import Chunk, EmbeddedChunk, IndexDefinition

STOPWORDS = {"a", "an", "and", "the", "is", "are", "of", "to", "in", "what", "how", "it", "on", "by"}
TOKEN = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Bag-of-words vectors via hashed token buckets."""

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype="float32")
        for token in TOKEN.findall(text.lower()):
            if token in STOPWORDS:
                continue
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        texts = list(texts)
        self.calls.append(texts)
        if not texts:
            return np.zeros((0, self.dimension), dtype="float32")
        return np.vstack([self._vector(t) for t in texts])

    async def embed_query(self, text: str) -> np.ndarray:
        return (await self.embed([text]))[0]


class StaticEmbedder:
    """Returns fixed vectors looked up by text."""

    def __init__(self, vectors: Dict[str, Sequence[float]]) -> None:
        self.vectors = {text: np.asarray(v, dtype="float32") for text, v in vectors.items()}
        self.dimension = len(next(iter(self.vectors.values())))

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        return np.vstack([self.vectors[t] for t in texts])

    async def embed_query(self, text: str) -> np.ndarray:
        return self.vectors[text]


class ScriptedLLM:
    """Records prompts and answers with a fixed response."""

    def __init__(self, response: str = "I don't know based on the provided context.") -> None:
        self.response = response
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.response


def make_records(texts: Sequence[str], vectors: np.ndarray, metadata: Sequence[dict] | None = None):
    records = []
    offset = 0
    for i, (text, vector) in enumerate(zip(texts, vectors)):
        meta = dict(metadata[i]) if metadata else {}
        meta.setdefault("chunk_index", i)
        chunk = Chunk(text=text, start=offset, end=offset + len(text), metadata=meta)
        records.append(EmbeddedChunk(chunk=chunk, vector=vector, id=uuid.uuid4().hex))
        offset += len(text)
    return records


async def populate(
    index: VectorIndex,
    texts: Sequence[str],
    metadata: Sequence[dict] | None = None,
    similarity: str = "cosine",
) -> None:
    """Insert texts, declare the index and wait for READY."""
    vectors = await index.embedder.embed(texts)
    await index.insert_all(make_records(texts, vectors, metadata))
    await index.create_index(
        IndexDefinition(
            name=index.index_name,
            path="embedding",
            num_dimensions=index.embedder.dimension,
            similarity=similarity,
        )
    )
    await await_ready(index, poll_interval=0.01, timeout=5.0)


@pytest.fixture
def store(tmp_path: Path):
    store = SQLiteVectorStore(tmp_path / "test.db")
    yield store
    store.close()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest_asyncio.fixture
async def index(store: SQLiteVectorStore, embedder: HashingEmbedder):
    index = VectorIndex(store, embedder, collection="test", index_name="vector_index")
    yield index
    await index.close()
