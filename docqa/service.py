"""Public operations of the document Q&A system.

``DocumentQA`` binds a vector store to the embedding and generation clients
and exposes ingest, answer, stats and clear. Use it as an async context
manager so the store handle is acquired and released around the work:

    async with DocumentQA() as qa:
        await qa.ingest("docs/")
        result = await qa.answer("How do I configure the cache?")
"""
from pathlib import Path
from typing import Optional, Union
import structlog

from docqa.llm_client import (
    EmbeddingClient,
    GenerationClient,
    GenerationOptions,
    OllamaClient,
)
from docqa.rag.answer import AnswerPipeline, AnswerResult
from docqa.rag.chunker import TextChunker
from docqa.rag.ingest import IngestPipeline, IngestReport
from docqa.rag.retriever import Retriever
from docqa.rag.vector_store import StoreStats, VectorStore

logger = structlog.get_logger()


class DocumentQA:
    """Facade over the ingest and answer pipelines."""

    def __init__(
        self,
        store: Optional[VectorStore] = None,
        embedder: Optional[EmbeddingClient] = None,
        generator: Optional[GenerationClient] = None,
        chunker: Optional[TextChunker] = None,
        retriever: Optional[Retriever] = None,
    ):
        """Initialize the facade.

        Args:
            store: Vector store handle (default database from config)
            embedder: Embedding client (default Ollama client)
            generator: Generation client (default Ollama client)
            chunker: Chunking policy for ingestion
            retriever: Retrieval policy for answers
        """
        client = None
        if embedder is None or generator is None:
            client = OllamaClient()

        self.store = store or VectorStore()
        self.embedder = embedder or client
        self.generator = generator or client

        self.ingest_pipeline = IngestPipeline(self.store, self.embedder, chunker=chunker)
        self.answer_pipeline = AnswerPipeline(
            self.store,
            self.embedder,
            self.generator,
            retriever=retriever,
        )

    async def __aenter__(self) -> "DocumentQA":
        await self.store.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.store.close()

    async def ingest(
        self,
        path: Union[str, Path],
        recursive: bool = True,
        type_filter: Optional[str] = None,
        progress_callback=None,
    ) -> IngestReport:
        """Ingest a file or directory. See ``IngestPipeline.ingest``."""
        return await self.ingest_pipeline.ingest(
            path,
            recursive=recursive,
            type_filter=type_filter,
            progress_callback=progress_callback,
        )

    async def answer(
        self,
        question: str,
        k: Optional[int] = None,
        options: Optional[GenerationOptions] = None,
    ) -> AnswerResult:
        """Answer a question. See ``AnswerPipeline.answer``."""
        return await self.answer_pipeline.answer(question, k=k, options=options)

    async def stats(self) -> StoreStats:
        return await self.store.stats()

    async def delete(self, source: str) -> int:
        return await self.store.delete(source)

    async def clear(self) -> int:
        return await self.store.clear()
