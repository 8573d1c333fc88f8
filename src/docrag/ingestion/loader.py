"""Document fetching and text extraction.

Uses PyMuPDF (fitz) for PDF text extraction; other payloads are decoded as
UTF-8 text.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterator

import fitz  # PyMuPDF
import httpx

from docrag.errors import DocumentFetchError
from docrag.models import Document
from docrag.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def is_url(locator: str) -> bool:
    return locator.startswith(("http://", "https://"))


async def fetch_bytes(
    locator: str,
    client: httpx.AsyncClient | None = None,
    *,
    save_to: Path | None = None,
) -> bytes:
    """Fetch raw bytes from a URL or a local path, optionally persisting them."""
    if is_url(locator):
        if client is None:
            raise DocumentFetchError(f"An HTTP client is required to fetch {locator}")
        try:
            resp = await client.get(locator, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DocumentFetchError(f"Failed to fetch {locator}: {exc}") from exc
        data = resp.content
    else:
        path = Path(locator).expanduser()
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise DocumentFetchError(f"Failed to read {path}: {exc}") from exc

    if save_to is not None:
        await asyncio.to_thread(Path(save_to).write_bytes, data)
        LOGGER.info("Saved %d bytes from %s to %s", len(data), locator, save_to)
    return data


def iter_pdf_pages(data: bytes, source: str) -> Iterator[str]:
    """Yield normalized text content from a PDF payload page by page."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise DocumentFetchError(f"Failed to open PDF {source}: {exc}") from exc

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover - defensive path
                LOGGER.warning("Failed to read page %s in %s: %s", index, source, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized
    finally:
        doc.close()


def get_pdf_metadata(data: bytes, source: str) -> Dict[str, str]:
    """Extract title and page count from a PDF payload."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        metadata = doc.metadata or {}
        return {
            "title": metadata.get("title") or Path(source).stem,
            "page_count": str(len(doc)),
        }
    finally:
        doc.close()


def extract_text(data: bytes, source: str) -> Document:
    """Turn a fetched payload into a `Document`."""
    if data.startswith(PDF_MAGIC):
        text = "\n\n".join(iter_pdf_pages(data, source))
        return Document(text=text, source=source, metadata=get_pdf_metadata(data, source))

    try:
        decoded = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DocumentFetchError(f"{source} is neither a PDF nor UTF-8 text") from exc
    return Document(
        text=normalize_whitespace(decoded.splitlines()),
        source=source,
        metadata={"title": Path(source).stem},
    )


async def load_document(
    locator: str,
    client: httpx.AsyncClient | None = None,
    *,
    save_to: Path | None = None,
) -> Document:
    data = await fetch_bytes(locator, client, save_to=save_to)
    document = await asyncio.to_thread(extract_text, data, locator)
    if not document.text:
        LOGGER.warning("No text extracted from %s", locator)
    return document
