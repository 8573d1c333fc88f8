"""Embedding providers: local sentence-transformers and the OpenAI embeddings API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Protocol, Sequence, runtime_checkable

import httpx
import numpy as np
from sentence_transformers import SentenceTransformer

from docrag.errors import EmbeddingProviderError

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Maps texts to fixed-dimension vectors, one per text, in input order."""

    dimension: int

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        ...

    async def embed_query(self, text: str) -> np.ndarray:
        ...


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for query and document embeddings.

    Encoding is CPU/GPU bound, so the async methods hand it to a worker thread.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        try:
            self._model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        except Exception as exc:
            raise EmbeddingProviderError(
                f"Failed to load embedding model {self.config.model_name!r}: {exc}"
            ) from exc

        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded embedding model %s (backend: %s, dimension: %d)",
            self.config.model_name,
            self.config.backend,
            self.dimension,
        )

    def embed_sync(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")
        try:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingProviderError(f"Embedding failed: {exc}") from exc
        return embeddings.astype("float32", copy=False)

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        return await asyncio.to_thread(self.embed_sync, list(texts))

    async def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return (await self.embed([text]))[0]


class OpenAIEmbeddings:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint.

    The HTTP client is owned by the caller (see `docrag.session.RAGSession`).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        dimension: int | None = None,
        batch_size: int = 512,
    ) -> None:
        if not api_key:
            raise EmbeddingProviderError("An OpenAI API key is required for OpenAI embeddings")
        self._client = client
        self._api_key = api_key
        self.model = model
        self.batch_size = batch_size
        self.dimension = dimension or OPENAI_DIMENSIONS.get(model, 1536)

    async def _request(self, batch: list[str]) -> list[list[float]]:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        body = {"model": self.model, "input": batch}
        try:
            resp = await self._client.post("/embeddings", headers=headers, json=body)
            resp.raise_for_status()
            data = resp.json()["data"]
        except httpx.HTTPStatusError as exc:
            raise EmbeddingProviderError(
                f"Embedding request failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise EmbeddingProviderError(f"Embedding request failed: {exc}") from exc

        ordered = sorted(data, key=lambda item: item["index"])
        return [item["embedding"] for item in ordered]

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        texts = list(texts)
        vectors: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            logger.debug("Embedding batch of %d texts with %s", len(batch), self.model)
            vectors.extend(await self._request(batch))

        if not vectors:
            return np.zeros((0, self.dimension), dtype="float32")
        matrix = np.asarray(vectors, dtype="float32")
        if matrix.shape[1] != self.dimension:
            raise EmbeddingProviderError(
                f"Expected {self.dimension}-dimensional embeddings, got {matrix.shape[1]}"
            )
        return matrix

    async def embed_query(self, text: str) -> np.ndarray:
        return (await self.embed([text]))[0]
