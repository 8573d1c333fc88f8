"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Literal, Mapping

from docrag.embedding.encoder import DEFAULT_MODEL
from docrag.errors import InvalidConfigError
from docrag.llm import DEFAULT_BASE_URL, DEFAULT_CHAT_MODEL

ENV_PREFIX = "DOCRAG_"


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / "Documents" / "DocRag" / "docrag.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/docrag.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    collection: str = "documents"
    index_name: str = "vector_index"
    text_key: str = "text"
    embedding_key: str = "embedding"
    similarity: str = "cosine"
    embedding_backend: Literal["sentence-transformers", "openai"] = "sentence-transformers"
    model_name: str = DEFAULT_MODEL
    chunk_size: int = 200
    chunk_overlap: int = 20
    k: int = 4
    fetch_k: int = 20
    lambda_mult: float = 0.5
    poll_interval: float = 1.0
    build_timeout: float = 60.0
    llm_model: str = DEFAULT_CHAT_MODEL
    openai_api_key: str | None = None
    openai_base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "AppConfig":
        """Build a config from ``DOCRAG_*`` variables plus ``OPENAI_API_KEY``.

        Values are coerced to the field's default type; explicit ``overrides``
        that are not None win over the environment.
        """
        environ = os.environ if environ is None else environ
        defaults = cls()
        values: dict = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(defaults, f.name)
            try:
                if f.name == "db_path":
                    values[f.name] = Path(raw)
                elif isinstance(current, bool):
                    values[f.name] = raw.lower() in ("1", "true", "yes")
                elif isinstance(current, int):
                    values[f.name] = int(raw)
                elif isinstance(current, float):
                    values[f.name] = float(raw)
                else:
                    values[f.name] = raw
            except ValueError as exc:
                raise InvalidConfigError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from exc

        if "openai_api_key" not in values and environ.get("OPENAI_API_KEY"):
            values["openai_api_key"] = environ["OPENAI_API_KEY"]
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
