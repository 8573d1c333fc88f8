"""SQLite vector collection and search-index catalogue."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

import numpy as np

from docrag.errors import IndexAlreadyExistsError, IndexNotFoundError, InvalidConfigError
from docrag.models import EmbeddedChunk, IndexDefinition, IndexStatus, SIMILARITY_METRICS


class SQLiteVectorStore:
    """Persistence layer for embedded chunks and their search indexes.

    The store is shared between the event loop and worker threads, so every
    statement runs under one lock.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        text_key: str = "text",
        embedding_key: str = "embedding",
    ) -> None:
        self.db_path = Path(db_path)
        self.text_key = text_key
        self.embedding_key = embedding_key
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    collection TEXT NOT NULL,
                    text TEXT NOT NULL,
                    start_offset INTEGER NOT NULL,
                    end_offset INTEGER NOT NULL,
                    metadata TEXT,
                    embedding BLOB NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_records_collection
                    ON records(collection)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS search_indexes (
                    collection TEXT NOT NULL,
                    name TEXT NOT NULL,
                    definition TEXT NOT NULL,
                    status TEXT NOT NULL,
                    error TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, name)
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS search_indexes_updated
                AFTER UPDATE OF status ON search_indexes
                BEGIN
                    UPDATE search_indexes SET updated_at = CURRENT_TIMESTAMP
                    WHERE collection = NEW.collection AND name = NEW.name;
                END;
                """
            )

    def insert_records(self, collection: str, records: Sequence[EmbeddedChunk]) -> int:
        """Append embedded chunks to a collection; returns the number written."""
        with self.transaction() as conn:
            for record in records:
                chunk = record.chunk
                conn.execute(
                    """
                    INSERT INTO records(id, collection, text, start_offset, end_offset, metadata, embedding)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        collection,
                        chunk.text,
                        chunk.start,
                        chunk.end,
                        json.dumps(chunk.metadata, ensure_ascii=True, default=str),
                        sqlite3.Binary(np.asarray(record.vector, dtype="float32").tobytes()),
                    ),
                )
        return len(records)

    def count(self, collection: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM records WHERE collection = ?", (collection,)
            ).fetchone()
        return int(row["n"])

    def load_records(self, collection: str) -> List[Dict[str, Any]]:
        """Return every record of a collection in insertion order.

        Each record is a dict keyed by the configured text and embedding keys.
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, text, start_offset, end_offset, metadata, embedding
                FROM records WHERE collection = ? ORDER BY seq
                """,
                (collection,),
            ).fetchall()

        records: List[Dict[str, Any]] = []
        for row in rows:
            records.append(
                {
                    "id": row["id"],
                    self.text_key: row["text"],
                    "start": row["start_offset"],
                    "end": row["end_offset"],
                    "metadata": json.loads(row["metadata"]) if row["metadata"] else {},
                    self.embedding_key: np.frombuffer(row["embedding"], dtype="float32"),
                }
            )
        return records

    def create_search_index(self, collection: str, definition: IndexDefinition) -> None:
        """Declare a search index in the PENDING state."""
        if definition.path != self.embedding_key:
            raise InvalidConfigError(
                f"Index path {definition.path!r} does not match vector field {self.embedding_key!r}"
            )
        if definition.similarity not in SIMILARITY_METRICS:
            raise InvalidConfigError(f"Unsupported similarity metric {definition.similarity!r}")
        if definition.num_dimensions <= 0:
            raise InvalidConfigError("numDimensions must be positive")

        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM search_indexes WHERE collection = ? AND name = ?",
                (collection, definition.name),
            ).fetchone()
            if existing:
                raise IndexAlreadyExistsError(collection, definition.name)
            conn.execute(
                """
                INSERT INTO search_indexes(collection, name, definition, status)
                VALUES (?, ?, ?, ?)
                """,
                (
                    collection,
                    definition.name,
                    json.dumps(definition.to_dict()),
                    IndexStatus.PENDING.value,
                ),
            )

    def list_search_indexes(self, collection: str, name: str | None = None) -> List[Dict[str, Any]]:
        """Describe declared indexes, optionally filtered by name."""
        query = "SELECT name, definition, status, error FROM search_indexes WHERE collection = ?"
        params: tuple = (collection,)
        if name is not None:
            query += " AND name = ?"
            params = (collection, name)

        with self._lock:
            rows = self._conn.execute(query + " ORDER BY created_at, name", params).fetchall()
        return [
            {
                "name": row["name"],
                "status": row["status"],
                "error": row["error"],
                "latestDefinition": json.loads(row["definition"]),
            }
            for row in rows
        ]

    def set_index_status(
        self, collection: str, name: str, status: IndexStatus, error: str | None = None
    ) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE search_indexes SET status = ?, error = ?
                WHERE collection = ? AND name = ?
                """,
                (status.value, error, collection, name),
            )
            if cursor.rowcount == 0:
                raise IndexNotFoundError(collection, name)
