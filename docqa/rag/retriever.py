"""Retriever for semantic search over ingested documents.

Handles:
- Query embedding generation
- Vector store search
- Relevance threshold filtering
- Bounded context assembly with source labels
"""
from pathlib import Path
from typing import List, Optional, Tuple
import structlog

from docqa import config
from docqa.errors import ProviderError
from docqa.llm_client import EmbeddingClient
from docqa.rag.vector_store import SearchResult, VectorStore

logger = structlog.get_logger()

CONTEXT_SEPARATOR = "\n\n---\n\n"

# A result that doesn't fit is only truncated into the remaining room if at
# least this many characters are left.
MIN_TRUNCATED_CHARS = 200


def format_source(result: SearchResult) -> str:
    """Short display label for a result's source."""
    return Path(result.source).name


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        top_k: int = None,
        relevance_threshold: float = None,
        max_context_chars: int = None,
    ):
        """Initialize the retriever.

        Args:
            store: Open vector store
            embedder: Embedding client for queries
            top_k: Number of results to retrieve (default from config)
            relevance_threshold: Minimum cosine similarity to keep a result
            max_context_chars: Budget for the assembled context block
        """
        self.store = store
        self.embedder = embedder
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.relevance_threshold = (
            relevance_threshold
            if relevance_threshold is not None
            else config.RELEVANCE_THRESHOLD
        )
        self.max_context_chars = max_context_chars or config.MAX_CONTEXT_CHARS

    async def retrieve(
        self, query: str, top_k: Optional[int] = None
    ) -> List[SearchResult]:
        """Retrieve relevant chunks for a query.

        Args:
            query: User query text
            top_k: Number of candidates to rank (overrides default)

        Returns:
            Results at or above the relevance threshold, best first

        Raises:
            ProviderError: If the query cannot be embedded or the
                embedding is a zero vector
            DimensionMismatch: If the query embedding doesn't fit the store
            StoreUnavailable: On database failure
        """
        top_k = top_k if top_k is not None else self.top_k

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        query_embedding = await self.embedder.embed(query)
        if not any(query_embedding):
            logger.error("query_embedding_zero", dimension=len(query_embedding))
            raise ProviderError("Embedding service returned a zero vector for the query")

        candidates = await self.store.search(query_embedding, top_k)

        results = [
            result
            for result in candidates
            if result.similarity >= self.relevance_threshold
        ]

        logger.info(
            "retrieval_completed",
            candidates=len(candidates),
            results_returned=len(results),
            top_similarity=candidates[0].similarity if candidates else None,
            threshold=self.relevance_threshold,
        )

        return results

    def build_context(
        self, results: List[SearchResult]
    ) -> Tuple[str, List[SearchResult]]:
        """Format ranked results into a bounded context block.

        Args:
            results: Ranked results

        Returns:
            Tuple of (context text, results actually included)
        """
        parts: List[str] = []
        included: List[SearchResult] = []
        total_chars = 0

        for result in results:
            separator = CONTEXT_SEPARATOR if parts else ""
            block = f"[Source: {format_source(result)}]\n{result.content.strip()}"

            remaining = self.max_context_chars - total_chars - len(separator)
            if len(block) > remaining:
                # The best result is always included, truncated if needed
                if not parts or remaining >= MIN_TRUNCATED_CHARS:
                    parts.append(separator + block[: max(remaining - 3, 0)] + "...")
                    included.append(result)
                break

            parts.append(separator + block)
            included.append(result)
            total_chars += len(separator) + len(block)

        context = "".join(parts)

        logger.debug(
            "context_formatted",
            num_chunks=len(included),
            total_chars=len(context),
        )

        return context, included
