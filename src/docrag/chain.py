"""Retrieval-augmented answering as a fixed sequence of typed stages."""

from __future__ import annotations

import logging
from typing import List, Sequence

from docrag.errors import GenerationError
from docrag.index.vector_index import VectorIndex
from docrag.llm import LanguageModel
from docrag.models import RAGAnswer, RetrievalMode, SearchQuery, SearchResult

LOGGER = logging.getLogger(__name__)

PROMPT_TEMPLATE = """Answer the question based only on the following context:
{context}

Question: {question}"""

CONTEXT_DELIMITER = "\n\n"


class RAGChain:
    """question -> retrieve -> format context -> render prompt -> generate -> parse.

    An empty retrieval is not an error: the prompt is rendered with an empty
    context and the model is left to say it cannot answer.
    """

    def __init__(
        self,
        index: VectorIndex,
        llm: LanguageModel,
        *,
        k: int = 4,
        mode: RetrievalMode = RetrievalMode.SIMILARITY,
        fetch_k: int = 20,
        lambda_mult: float = 0.5,
        delimiter: str = CONTEXT_DELIMITER,
        template: str = PROMPT_TEMPLATE,
    ) -> None:
        self.index = index
        self.llm = llm
        self.k = k
        self.mode = RetrievalMode(mode)
        self.fetch_k = max(fetch_k, k)
        self.lambda_mult = lambda_mult
        self.delimiter = delimiter
        self.template = template

    async def retrieve(self, question: str) -> List[SearchResult]:
        query = SearchQuery(
            text=question, k=self.k, fetch_k=self.fetch_k, lambda_mult=self.lambda_mult
        )
        if self.mode is RetrievalMode.MMR:
            return await self.index.max_marginal_relevance_search(query)
        return await self.index.similarity_search(query)

    def format_context(self, results: Sequence[SearchResult]) -> str:
        return self.delimiter.join(result.chunk.text for result in results)

    def render_prompt(self, context: str, question: str) -> str:
        return self.template.format(context=context, question=question)

    async def generate(self, prompt: str) -> str:
        try:
            return await self.llm.generate(prompt)
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Language model invocation failed: {exc}") from exc

    def parse_output(self, response: str) -> str:
        return response.strip()

    async def answer(self, question: str) -> RAGAnswer:
        results = await self.retrieve(question)
        if not results:
            LOGGER.info("No context retrieved for question %r", question)
        context = self.format_context(results)
        prompt = self.render_prompt(context, question)
        response = await self.generate(prompt)
        return RAGAnswer(
            question=question,
            context_used=[result.chunk for result in results],
            answer=self.parse_output(response),
        )
