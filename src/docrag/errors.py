"""Exception hierarchy shared by every docrag component."""

from __future__ import annotations


class DocRagError(Exception):
    """Base class for all docrag errors."""


class InvalidConfigError(DocRagError, ValueError):
    """Bad chunking, search or polling parameters (a caller bug)."""


class EmbeddingProviderError(DocRagError):
    """The embedding provider failed (rate limit, auth, network, model load)."""


class GenerationError(DocRagError):
    """The language model invocation failed."""


class DocumentFetchError(DocRagError):
    """The source document could not be fetched or decoded."""


class IndexAlreadyExistsError(DocRagError):
    """A search index with the same name already exists on the collection."""

    def __init__(self, collection: str, name: str) -> None:
        super().__init__(f"Search index {name!r} already exists on collection {collection!r}")
        self.collection = collection
        self.name = name


class IndexNotFoundError(DocRagError):
    """No search index with the given name has been declared."""

    def __init__(self, collection: str, name: str) -> None:
        super().__init__(f"Search index {name!r} not found on collection {collection!r}")
        self.collection = collection
        self.name = name


class IndexNotReadyError(DocRagError):
    """A search was attempted against an index that is not READY."""


class IndexBuildFailedError(DocRagError):
    """The index build ended in the FAILED state."""


class IndexBuildTimeoutError(DocRagError, TimeoutError):
    """The index did not become READY before the deadline."""


class IndexBuildCancelledError(DocRagError):
    """Waiting for the index build was aborted by the caller."""
