"""Core docrag data models."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Union

import numpy as np

LOGGER = logging.getLogger(__name__)

SIMILARITY_METRICS = ("cosine", "euclidean", "dotProduct")

MetadataFilter = Union[Mapping[str, Any], Callable[[Mapping[str, Any]], bool]]


@dataclass(frozen=True, slots=True)
class Document:
    """Raw document text plus the locator it was loaded from."""

    text: str
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Chunk:
    """Span of document text treated as one retrievable unit."""

    text: str
    start: int
    end: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source_offset(self) -> range:
        return range(self.start, self.end)


@dataclass(frozen=True, slots=True)
class EmbeddedChunk:
    """Chunk paired with its embedding vector."""

    chunk: Chunk
    vector: np.ndarray
    id: str


class IndexStatus(str, enum.Enum):
    PENDING = "PENDING"
    BUILDING = "BUILDING"
    READY = "READY"
    FAILED = "FAILED"

    @classmethod
    def from_backend(cls, value: str) -> "IndexStatus":
        """Map a backend status string onto the lifecycle states."""
        normalized = (value or "").strip().upper()
        if normalized in ("READY", "FAILED", "BUILDING"):
            return cls(normalized)
        if normalized in ("PENDING", "CREATING"):
            return cls.PENDING
        LOGGER.debug("Unknown backend index status %r, treating as BUILDING", value)
        return cls.BUILDING

    @property
    def terminal(self) -> bool:
        return self in (IndexStatus.READY, IndexStatus.FAILED)


@dataclass(frozen=True, slots=True)
class IndexDefinition:
    """Declaration of a vector search index over one vector field."""

    name: str
    path: str
    num_dimensions: int
    similarity: str = "cosine"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": "vectorSearch",
            "definition": {
                "fields": [
                    {
                        "type": "vector",
                        "path": self.path,
                        "numDimensions": self.num_dimensions,
                        "similarity": self.similarity,
                    }
                ]
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndexDefinition":
        vector_field = data["definition"]["fields"][0]
        return cls(
            name=data["name"],
            path=vector_field["path"],
            num_dimensions=int(vector_field["numDimensions"]),
            similarity=vector_field.get("similarity", "cosine"),
        )


@dataclass(frozen=True, slots=True)
class IndexHandle:
    """Reference to a declared index, returned by ingestion."""

    collection: str
    name: str
    definition: IndexDefinition
    inserted: int = 0


class RetrievalMode(str, enum.Enum):
    SIMILARITY = "similarity"
    MMR = "mmr"


@dataclass(slots=True)
class SearchQuery:
    text: str
    k: int = 4
    fetch_k: int = 20
    lambda_mult: float = 0.5
    filter: MetadataFilter | None = None


@dataclass(slots=True)
class SearchResult:
    chunk: Chunk
    score: float

    @property
    def text(self) -> str:
        return self.chunk.text


@dataclass(slots=True)
class RAGAnswer:
    question: str
    context_used: List[Chunk]
    answer: str
