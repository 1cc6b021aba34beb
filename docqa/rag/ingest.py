"""Ingest pipeline for indexing documents.

Orchestrates:
- File discovery
- Document loading and text extraction
- Text chunking
- Concurrent embedding generation
- One replace-on-conflict upsert per document
"""
import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union
import yaml
import structlog

from docqa import config
from docqa.errors import (
    DimensionMismatch,
    EmptyContent,
    ProviderError,
    UnsupportedFileType,
)
from docqa.llm_client import EmbeddingClient
from docqa.rag.chunker import TextChunker
from docqa.rag.documents import Document, DocumentLoader, detect_file_type
from docqa.rag.vector_store import (
    ChunkMetadata,
    EmbeddingRecord,
    VectorStore,
    chunk_id_for,
)

logger = structlog.get_logger()

# Errors that cost one document, not the batch
DOCUMENT_ERRORS = (
    UnsupportedFileType,
    EmptyContent,
    ProviderError,
    DimensionMismatch,
    OSError,
    UnicodeDecodeError,
    ValueError,
    yaml.YAMLError,
)


@dataclass
class SkippedDocument:
    """A file or directory that was not ingested, and why."""

    source: str
    reason: str
    error_type: str


@dataclass
class IngestReport:
    """Outcome of one ingest call."""

    documents_processed: int = 0
    chunks_created: int = 0
    skipped: List[SkippedDocument] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "documents_processed": self.documents_processed,
            "chunks_created": self.chunks_created,
            "skipped": [
                {"source": s.source, "reason": s.reason, "error_type": s.error_type}
                for s in self.skipped
            ],
        }


class IngestPipeline:
    """Pipeline for ingesting documents into the vector store."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        chunker: Optional[TextChunker] = None,
        loader: Optional[DocumentLoader] = None,
        embed_concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Open vector store
            embedder: Embedding client
            chunker: Text chunker (default chunking policy from config)
            loader: Document loader (default supported types from config)
            embed_concurrency: Max embedding requests in flight per document
        """
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.loader = loader or DocumentLoader()
        self.embed_concurrency = embed_concurrency or config.EMBED_CONCURRENCY

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            embed_concurrency=self.embed_concurrency,
        )

    def discover_files(
        self, root: Path, recursive: bool, report: IngestReport
    ) -> Iterator[Path]:
        """Yield files under a directory in a deterministic order.

        A directory that cannot be listed is recorded in the report and
        skipped; the rest of the tree is still walked.
        """
        def on_error(error: OSError) -> None:
            logger.warning(
                "directory_enumeration_failed",
                path=error.filename,
                error=str(error),
            )
            report.skipped.append(
                SkippedDocument(
                    source=str(error.filename),
                    reason=f"Cannot list directory: {error.strerror or error}",
                    error_type=type(error).__name__,
                )
            )

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            if not recursive:
                dirnames.clear()
            for name in sorted(filenames):
                yield Path(dirpath) / name

    async def embed_chunks(self, texts: List[str]) -> List[List[float]]:
        """Embed chunk texts concurrently, returning vectors in input order.

        The first failure cancels the requests still pending or in flight.

        Raises:
            ProviderError: If any embedding request fails
        """
        semaphore = asyncio.Semaphore(self.embed_concurrency)

        async def embed_one(text: str) -> List[float]:
            async with semaphore:
                return await self.embedder.embed(text)

        tasks = [asyncio.ensure_future(embed_one(text)) for text in texts]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def ingest_document(self, document: Document) -> int:
        """Chunk, embed and store a single document.

        Args:
            document: Loaded document

        Returns:
            Number of chunks stored

        Raises:
            EmptyContent: If no chunk passes the minimum length (any previous
                records of the source are removed first)
            ProviderError: If embedding fails (store untouched)
            DimensionMismatch: If vectors don't fit the store (store untouched)
            StoreUnavailable: On database failure
        """
        chunks = self.chunker.chunk_text(document.text)

        if not chunks:
            logger.warning("no_chunks_created", source=document.source)
            await self.store.upsert(document.source, [])
            raise EmptyContent(document.source, "no chunk above minimum length")

        embeddings = await self.embed_chunks([chunk.content for chunk in chunks])

        records = [
            EmbeddingRecord(
                chunk_id=chunk_id_for(document.source, chunk.chunk_index),
                content=chunk.content,
                embedding=embedding,
                metadata=ChunkMetadata(
                    source=document.source,
                    chunk_index=chunk.chunk_index,
                    file_type=document.file_type,
                    last_modified=document.last_modified,
                ),
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

        await self.store.upsert(document.source, records)

        logger.info(
            "document_ingested",
            source=document.source,
            chunks_created=len(records),
        )

        return len(records)

    def _record_skip(
        self,
        report: IngestReport,
        file_path: Path,
        error: Exception,
        reason: Optional[str] = None,
    ) -> None:
        logger.warning(
            "file_ingestion_skipped",
            path=str(file_path),
            error=reason or str(error),
            error_type=type(error).__name__,
        )
        report.skipped.append(
            SkippedDocument(
                source=str(file_path),
                reason=reason or str(error),
                error_type=type(error).__name__,
            )
        )

    async def ingest(
        self,
        path: Union[str, Path],
        recursive: bool = True,
        type_filter: Optional[str] = None,
        progress_callback: Optional[Callable[[int, Path], None]] = None,
    ) -> IngestReport:
        """Ingest a file or every supported file under a directory.

        Args:
            path: File or directory
            recursive: Descend into subdirectories
            type_filter: Only ingest this file type (e.g. "md")
            progress_callback: Optional callback(index, file_path) per file

        Returns:
            IngestReport with processed, created and skipped counts

        Raises:
            FileNotFoundError: If path doesn't exist
            StoreUnavailable: If the store fails (aborts the whole call)
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Path does not exist: {path}")

        type_filter = type_filter.lower().lstrip(".") if type_filter else None
        report = IngestReport()

        logger.info(
            "ingest_started",
            path=str(path),
            recursive=recursive,
            type_filter=type_filter,
        )

        if path.is_dir():
            files = self.discover_files(path, recursive, report)
        else:
            files = iter([path])

        for idx, file_path in enumerate(files, 1):
            file_type = detect_file_type(file_path)
            if type_filter and file_type != type_filter:
                if file_path == path:
                    # A file named explicitly is reported, never dropped
                    self._record_skip(
                        report,
                        file_path,
                        UnsupportedFileType(str(file_path), file_type),
                        reason=f"File type '{file_type}' does not match filter '{type_filter}'",
                    )
                else:
                    logger.debug("file_filtered_out", path=str(file_path), file_type=file_type)
                continue

            if progress_callback:
                progress_callback(idx, file_path)

            try:
                document = self.loader.load(file_path)
            except EmptyContent as e:
                # An emptied file must not leave its previous generation behind
                await self.store.delete(e.path)
                self._record_skip(report, file_path, e)
                continue
            except DOCUMENT_ERRORS as e:
                self._record_skip(report, file_path, e)
                continue

            try:
                report.chunks_created += await self.ingest_document(document)
                report.documents_processed += 1
            except DOCUMENT_ERRORS as e:
                self._record_skip(report, file_path, e)

        logger.info("ingest_completed", **report.to_dict())

        return report
