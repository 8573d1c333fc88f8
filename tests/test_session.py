"""End-to-end tests through RAGSession."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from docrag.config import AppConfig
from docrag.errors import DocRagError, IndexNotFoundError, InvalidConfigError
from docrag.models import Document, RetrievalMode, SearchQuery
from docrag.session import RAGSession

from conftest import HashingEmbedder, ScriptedLLM

PARAGRAPHS = [
    "The lighthouse keeper lived alone on the rocky island. Every evening he climbed "
    "the spiral stairs to light the great lamp before the fishing boats returned.",
    "Photosynthesis is the process plants use to turn sunlight, water and carbon dioxide "
    "into glucose and oxygen. It takes place inside the chloroplasts of leaf cells.",
    "Winter storms battered the coast for weeks. The keeper kept a logbook of every ship "
    "that passed and every gale that rattled the windows of the tower.",
]
DOCUMENT = Document(text="\n\n".join(PARAGRAPHS), source="keeper.txt")


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        db_path=tmp_path / "rag.db",
        collection="test",
        chunk_size=200,
        chunk_overlap=20,
        k=3,
        poll_interval=0.01,
        build_timeout=5.0,
    )


def _session(tmp_path: Path, llm: ScriptedLLM | None = None, **kwargs) -> RAGSession:
    return RAGSession(_config(tmp_path), embedder=HashingEmbedder(), llm=llm or ScriptedLLM(), **kwargs)


class TestSessionScope:
    """Test resource acquisition and release."""

    @pytest.mark.asyncio
    async def test_resources_released_on_exit(self, tmp_path: Path) -> None:
        session = _session(tmp_path)
        async with session:
            assert session.store is not None
            assert session.http is not None

        assert session.store is None
        assert session.http is None

    @pytest.mark.asyncio
    async def test_resources_released_on_error(self, tmp_path: Path) -> None:
        session = _session(tmp_path)
        with pytest.raises(IndexNotFoundError):
            async with session:
                await session.search("anything")

        assert session.store is None
        assert session.http is None

    @pytest.mark.asyncio
    async def test_use_outside_scope(self, tmp_path: Path) -> None:
        with pytest.raises(DocRagError):
            await _session(tmp_path).search("anything")

    @pytest.mark.asyncio
    async def test_creates_db_parent(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.db_path = tmp_path / "nested" / "dir" / "rag.db"
        async with RAGSession(config, embedder=HashingEmbedder(), llm=ScriptedLLM()):
            pass
        assert config.db_path.exists()


class TestEndToEnd:
    """Ingest, search and answer over a small document."""

    @pytest.mark.asyncio
    async def test_paragraph_two_in_top_three(self, tmp_path: Path) -> None:
        async with _session(tmp_path) as session:
            handle = await session.ingest(DOCUMENT)
            results = await session.search(SearchQuery(text="What is photosynthesis?", k=3))

        assert handle.inserted >= 3
        assert len(results) <= 3
        assert any("Photosynthesis is the process" in r.chunk.text for r in results)

    @pytest.mark.asyncio
    async def test_mmr_search(self, tmp_path: Path) -> None:
        async with _session(tmp_path) as session:
            await session.ingest(DOCUMENT)
            results = await session.search(
                SearchQuery(text="lighthouse keeper", k=2, fetch_k=4), RetrievalMode.MMR
            )

        assert 1 <= len(results) <= 2
        assert len({r.chunk.start for r in results}) == len(results)

    @pytest.mark.asyncio
    async def test_search_with_string_uses_config_defaults(self, tmp_path: Path) -> None:
        async with _session(tmp_path) as session:
            await session.ingest(DOCUMENT)
            results = await session.search("keeper")

        assert len(results) <= 3

    @pytest.mark.asyncio
    async def test_answer_grounded_in_context(self, tmp_path: Path) -> None:
        llm = ScriptedLLM("Plants turn sunlight into glucose.")
        async with _session(tmp_path, llm) as session:
            await session.ingest(DOCUMENT)
            answer = await session.answer("What is photosynthesis?")

        assert answer.answer == "Plants turn sunlight into glucose."
        assert any("Photosynthesis" in c.text for c in answer.context_used)
        assert "based only on the following context" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_unrelated_question_passes_unrelated_context(self, tmp_path: Path) -> None:
        """The model sees non-empty, off-topic context under the grounding instruction."""
        llm = ScriptedLLM("The context does not contain that information.")
        narrow = Document(text="\n\n".join(PARAGRAPHS[1:2]), source="photo.txt")
        async with _session(tmp_path, llm) as session:
            await session.ingest(narrow)
            answer = await session.answer("Who won the 1998 football world cup?")

        assert answer.context_used
        assert all(c.text.strip() for c in answer.context_used)
        assert all("football" not in c.text for c in answer.context_used)
        prompt = llm.prompts[0]
        assert prompt.startswith("Answer the question based only on the following context:")
        assert "Photosynthesis" in prompt
        assert "does not contain" in answer.answer

    @pytest.mark.asyncio
    async def test_ingest_from_local_file(self, tmp_path: Path) -> None:
        path = tmp_path / "keeper.txt"
        path.write_text(DOCUMENT.text, encoding="utf-8")

        async with _session(tmp_path) as session:
            handle = await session.ingest(str(path), chunk_size=120, chunk_overlap=10)
            results = await session.search(SearchQuery(text="chloroplasts", k=1))

        assert handle.inserted > 3
        assert "chloroplasts" in results[0].chunk.text
        assert results[0].chunk.metadata["source"] == str(path)

    @pytest.mark.asyncio
    async def test_ingest_from_url(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=DOCUMENT.text.encode("utf-8"))
        )
        async with _session(tmp_path, transport=transport) as session:
            handle = await session.ingest("https://example.com/keeper.txt")

        assert handle.inserted >= 3


class TestExplicitArguments:
    """Explicit zero values are validated rather than replaced by config defaults."""

    @pytest.mark.asyncio
    async def test_zero_chunk_size_rejected(self, tmp_path: Path) -> None:
        async with _session(tmp_path) as session:
            with pytest.raises(InvalidConfigError):
                await session.ingest(DOCUMENT, chunk_size=0)
            assert session.store.count("test") == 0

    @pytest.mark.asyncio
    async def test_zero_k_rejected(self, tmp_path: Path) -> None:
        async with _session(tmp_path) as session:
            assert session.chain(k=0).k == 0
            with pytest.raises(InvalidConfigError):
                await session.answer("What is photosynthesis?", k=0)


class TestEmbedderCache:
    """Loaded embedders are shared through an explicit cache."""

    @pytest.mark.asyncio
    async def test_model_built_once_per_cache(self, tmp_path: Path) -> None:
        cache: dict = {}
        built = HashingEmbedder()
        with patch.object(RAGSession, "_build_embedder", return_value=built) as build:
            for _ in range(2):
                session = RAGSession(_config(tmp_path), llm=ScriptedLLM(), embedder_cache=cache)
                async with session:
                    assert session.index.embedder is built

        build.assert_called_once()
        assert cache == {_config(tmp_path).model_name: built}

    @pytest.mark.asyncio
    async def test_without_cache_builds_each_time(self, tmp_path: Path) -> None:
        with patch.object(RAGSession, "_build_embedder", return_value=HashingEmbedder()) as build:
            for _ in range(2):
                async with RAGSession(_config(tmp_path), llm=ScriptedLLM()):
                    pass

        assert build.call_count == 2

    @pytest.mark.asyncio
    async def test_openai_embeddings_not_cached(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        config.embedding_backend = "openai"
        config.openai_api_key = "sk-test"
        cache: dict = {}

        async with RAGSession(config, llm=ScriptedLLM(), embedder_cache=cache):
            pass

        assert cache == {}
