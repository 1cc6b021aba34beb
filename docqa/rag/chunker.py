"""Text chunking with overlap for the RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
Windows prefer to end on a paragraph break, then a line break, then the
end of a sentence, as long as the break keeps the window at least half full.
"""
from typing import List
from dataclasses import dataclass
import structlog

from docqa import config

logger = structlog.get_logger()

# Priority order: the first kind found in the acceptable range wins.
BREAKPOINTS = ("\n\n", "\n", ". ", "! ", "? ")


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        min_chunk_length: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Target maximum chunk length in characters (default from config)
            chunk_overlap: Characters repeated at the start of the next chunk (default from config)
            min_chunk_length: Chunks this short or shorter after trimming are dropped
        """
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP
        )
        self.min_chunk_length = (
            min_chunk_length if min_chunk_length is not None else config.MIN_CHUNK_LENGTH
        )

        # Validate parameters
        if self.chunk_size <= 0 or self.chunk_overlap <= 0:
            raise ValueError(
                f"Chunk size ({self.chunk_size}) and overlap ({self.chunk_overlap}) "
                f"must be positive"
            )
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            min_chunk_length=self.min_chunk_length,
        )

    def split(self, text: str) -> List[str]:
        """Split text into an ordered list of passage strings."""
        return [chunk.content for chunk in self.chunk_text(text)]

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects in document order. ``char_start`` and
            ``char_end`` delimit the untrimmed window in ``text``.
        """
        if not text:
            return []

        text_length = len(text)
        chunks: List[TextChunk] = []
        start = 0

        while start < text_length:
            end = start + self.chunk_size

            if end < text_length:
                end = self._find_break(text, start, end)
            else:
                end = text_length

            content = text[start:end].strip()
            if len(content) > self.min_chunk_length:
                chunks.append(
                    TextChunk(
                        content=content,
                        char_start=start,
                        char_end=end,
                        chunk_index=len(chunks),
                    )
                )

            if end >= text_length:
                break

            # Move to next chunk with overlap, never backwards
            next_start = end - self.chunk_overlap
            start = next_start if next_start > start else end

        if chunks:
            logger.debug(
                "text_chunked",
                text_length=text_length,
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def _find_break(self, text: str, start: int, end: int) -> int:
        """Move a window end back to the best natural breakpoint.

        Args:
            text: Full text being chunked
            start: Window start
            end: Tentative (hard) window end

        Returns:
            Position just past the chosen breakpoint, or ``end`` if none qualifies
        """
        min_break = start + self.chunk_size * 0.5

        for breakpoint in BREAKPOINTS:
            # A breakpoint may straddle the hard end, as long as it starts at or before it
            index = text.rfind(breakpoint, start, end + len(breakpoint))
            if index >= min_break:
                return index + len(breakpoint)

        return end

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
