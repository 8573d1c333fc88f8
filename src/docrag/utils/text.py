"""Text helpers including boundary-aware overlapping chunking."""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple

from docrag.errors import InvalidConfigError
from docrag.models import Chunk, Document

# Highest priority first.
BOUNDARY_SEPARATORS = ("\n\n", "\n", ". ", "? ", "! ", " ")

_BLANK_RUNS = re.compile(r"\n{3,}")


def _validate(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise InvalidConfigError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise InvalidConfigError(f"chunk_overlap must be non-negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise InvalidConfigError(
            f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def _find_end(text: str, start: int, chunk_size: int, chunk_overlap: int) -> int:
    """Return the end offset of the window starting at ``start``."""
    limit = min(start + chunk_size, len(text))
    if limit == len(text):
        return limit

    # A boundary must leave room for progress past the overlap and should not
    # produce a window less than half full.
    min_end = start + max(chunk_overlap + 1, chunk_size // 2)
    for separator in BOUNDARY_SEPARATORS:
        idx = text.rfind(separator, start, limit)
        if idx != -1 and idx + len(separator) >= min_end:
            return idx + len(separator)
    return limit


def split_text(text: str, *, chunk_size: int, chunk_overlap: int) -> List[Tuple[int, int]]:
    """Split text into overlapping ``(start, end)`` spans.

    Every span is at most ``chunk_size`` characters long and starts exactly
    ``chunk_overlap`` characters before the previous span's end, so the text
    is recovered by joining ``text[start + chunk_overlap:end]`` for every span
    after the first. Windows end on the strongest natural boundary available
    (paragraph, line, sentence, word) and fall back to a hard cut.
    """
    _validate(chunk_size, chunk_overlap)
    if not text:
        return []

    spans: List[Tuple[int, int]] = []
    start = 0
    while True:
        end = _find_end(text, start, chunk_size, chunk_overlap)
        spans.append((start, end))
        if end >= len(text):
            return spans
        start = end - chunk_overlap


def split_document(document: Document, *, chunk_size: int, chunk_overlap: int) -> List[Chunk]:
    """Produce ordered chunks for a document, keeping offsets in metadata."""
    chunks: List[Chunk] = []
    for index, (start, end) in enumerate(
        split_text(document.text, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    ):
        metadata = dict(document.metadata)
        metadata.update(
            {
                "source": document.source,
                "chunk_index": index,
                "start_index": start,
                "end_index": end,
            }
        )
        chunks.append(Chunk(text=document.text[start:end], start=start, end=end, metadata=metadata))
    return chunks


def merge_chunks(chunks: Iterable[Chunk]) -> str:
    """Rebuild the source text from consecutive chunks by de-overlapping offsets."""
    parts: List[str] = []
    covered = 0
    for chunk in chunks:
        skip = max(covered - chunk.start, 0)
        parts.append(chunk.text[skip:])
        covered = max(covered, chunk.end)
    return "".join(parts)


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Strip trailing spaces and collapse runs of blank lines to one blank line."""
    joined = "\n".join(line.rstrip() for line in lines)
    return _BLANK_RUNS.sub("\n\n", joined).strip("\n")
