"""Grounded question answering over the vector store."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import structlog

from docqa import config
from docqa.llm_client import EmbeddingClient, GenerationClient, GenerationOptions
from docqa.rag.retriever import Retriever
from docqa.rag.vector_store import SearchResult, VectorStore

logger = structlog.get_logger()

NO_DOCUMENTS_MESSAGE = (
    "No documents have been ingested yet. Please ingest some documents first."
)
NO_RELEVANT_CONTENT_MESSAGE = (
    "I couldn't find relevant information in the ingested documents "
    "to answer your question."
)

PROMPT_TEMPLATE = """You are a helpful assistant answering questions based on provided documentation.

Context from documents:
{context}

Question: {question}

Instructions:
- Answer based only on the provided context
- If the context doesn't contain enough information, say so clearly
- Be specific and reference the sources when possible
- Keep the answer concise but complete

Answer:"""


class AnswerStatus(str, Enum):
    ANSWERED = "answered"
    NO_DOCUMENTS = "no_documents"
    NO_RELEVANT_CONTENT = "no_relevant_content"


@dataclass
class AnswerResult:
    """Answer text with the sources it was grounded on."""

    text: str
    status: AnswerStatus
    sources: List[str] = field(default_factory=list)
    results: List[SearchResult] = field(default_factory=list)

    @property
    def answered(self) -> bool:
        return self.status is AnswerStatus.ANSWERED

    def to_dict(self) -> dict:
        return {
            "answer": self.text,
            "status": self.status.value,
            "sources": self.sources,
            "chunks": [
                {
                    "chunk_id": r.chunk_id,
                    "source": r.source,
                    "similarity": round(r.similarity, 4),
                    "content_preview": r.content[:200] + "..."
                    if len(r.content) > 200
                    else r.content,
                }
                for r in self.results
            ],
        }


def build_prompt(question: str, context: str) -> str:
    return PROMPT_TEMPLATE.format(context=context, question=question)


def unique_sources(results: List[SearchResult]) -> List[str]:
    """Source ids of the results, deduplicated, first occurrence wins."""
    return list(dict.fromkeys(result.source for result in results))


class AnswerPipeline:
    """Retrieves context for a question and asks the model to answer from it."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        generator: GenerationClient,
        retriever: Optional[Retriever] = None,
        options: Optional[GenerationOptions] = None,
    ):
        """Initialize the answer pipeline.

        Args:
            store: Open vector store
            embedder: Embedding client for the question
            generator: Generation client for the answer
            retriever: Retriever (built from store and embedder if omitted)
            options: Default generation options (temperature, max tokens)
        """
        self.store = store
        self.generator = generator
        self.retriever = retriever or Retriever(store, embedder)
        self.options = options or GenerationOptions(
            temperature=config.GENERATION_TEMPERATURE,
            max_tokens=config.GENERATION_MAX_TOKENS,
        )

    async def answer(
        self,
        question: str,
        k: Optional[int] = None,
        options: Optional[GenerationOptions] = None,
    ) -> AnswerResult:
        """Answer a question from the ingested documents.

        Args:
            question: Natural-language question
            k: Number of chunks to retrieve (default from the retriever)
            options: Generation options overriding the defaults

        Returns:
            AnswerResult; NO_DOCUMENTS and NO_RELEVANT_CONTENT are valid
            outcomes, not errors

        Raises:
            ValueError: If the question is blank or k is not positive
            ProviderError: If embedding or generation fails
            StoreUnavailable: On database failure
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("Question cannot be empty")
        if k is not None and k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        stats = await self.store.stats()
        if stats.total_records == 0:
            logger.info("answer_no_documents")
            return AnswerResult(text=NO_DOCUMENTS_MESSAGE, status=AnswerStatus.NO_DOCUMENTS)

        results = await self.retriever.retrieve(question, top_k=k)
        if not results:
            logger.info("answer_no_relevant_content", question_preview=question[:100])
            return AnswerResult(
                text=NO_RELEVANT_CONTENT_MESSAGE,
                status=AnswerStatus.NO_RELEVANT_CONTENT,
            )

        context, included = self.retriever.build_context(results)
        prompt = build_prompt(question, context)

        answer = await self.generator.generate(prompt, options or self.options)

        sources = unique_sources(included)
        text = f"{answer}\n\nSources: {', '.join(sources)}"

        logger.info(
            "answer_generated",
            question_length=len(question),
            chunks_used=len(included),
            sources=len(sources),
            answer_length=len(answer),
        )

        return AnswerResult(
            text=text,
            status=AnswerStatus.ANSWERED,
            sources=sources,
            results=included,
        )
