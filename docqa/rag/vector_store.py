"""Vector store for semantic search over document chunks.

Records live in SQLite (see ``docqa.db``); ranking uses a FAISS
``IndexFlatIP`` over L2-normalised vectors, so inner product equals cosine
similarity and distance is ``1 - similarity``.

Handles:
- Replace-on-conflict upserts, one transaction per source
- Per-source mutual exclusion for writers
- Dimension checks on write and on query
- Stable exact ranking (ties keep insertion order)
"""
import asyncio
import json
import sqlite3
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence
import numpy as np
import faiss
import structlog

from docqa import config, db
from docqa.errors import DimensionMismatch, StoreUnavailable

logger = structlog.get_logger()


@dataclass
class ChunkMetadata:
    """Metadata attached to each stored chunk."""

    source: str
    chunk_index: int
    file_type: str
    last_modified: datetime

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "chunkIndex": self.chunk_index,
            "fileType": self.file_type,
            "lastModified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ChunkMetadata":
        return cls(
            source=d["source"],
            chunk_index=int(d["chunkIndex"]),
            file_type=d.get("fileType", ""),
            last_modified=datetime.fromisoformat(d["lastModified"]),
        )


@dataclass
class EmbeddingRecord:
    """A chunk with its embedding, ready to be stored."""

    chunk_id: str
    content: str
    embedding: List[float]
    metadata: ChunkMetadata
    created_at: Optional[datetime] = None


@dataclass
class SearchResult:
    """A stored chunk ranked against a query vector."""

    chunk_id: str
    content: str
    metadata: ChunkMetadata
    created_at: datetime
    distance: float

    @property
    def source(self) -> str:
        return self.metadata.source

    @property
    def similarity(self) -> float:
        """Cosine similarity (1 = same direction)."""
        return 1.0 - self.distance


@dataclass
class StoreStats:
    """Aggregate view of the store contents."""

    total_records: int = 0
    total_sources: int = 0
    file_types: List[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None
    dimension: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "total_sources": self.total_sources,
            "file_types": self.file_types,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "dimension": self.dimension,
        }


def chunk_id_for(source: str, chunk_index: int) -> str:
    """Stable chunk identifier, reproducible across re-ingestion runs."""
    return f"{source}_chunk_{chunk_index}"


def _normalise(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    if np.any(norms == 0):
        raise ValueError("Cannot store or query a zero vector")
    return (vectors / norms).astype(np.float32)


class VectorStore:
    """SQLite-backed vector store with FAISS ranking."""

    def __init__(self, db_path: Path = None):
        """Initialize the vector store handle.

        Args:
            db_path: SQLite database file (default from config)
        """
        self.db_path = Path(db_path or config.DB_PATH)
        # A lock lives only while some writer holds or awaits it
        self._source_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._opened = False

    async def open(self) -> "VectorStore":
        """Create the schema if needed and check the database is usable.

        Raises:
            StoreUnavailable: If the database cannot be opened
        """
        try:
            await asyncio.to_thread(db.init_database, self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"Cannot open vector store at {self.db_path}: {e}") from e

        self._opened = True
        logger.info("vector_store_opened", db_path=str(self.db_path))
        return self

    async def close(self) -> None:
        """Release the handle. Connections are per-operation, so only state is reset."""
        self._opened = False
        self._source_locks.clear()
        logger.info("vector_store_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> "VectorStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _lock_for(self, source: str) -> asyncio.Lock:
        lock = self._source_locks.get(source)
        if lock is None:
            lock = asyncio.Lock()
            self._source_locks[source] = lock
        return lock

    async def _run(self, func, *args):
        """Run a blocking database helper in a worker thread.

        Raises:
            StoreUnavailable: On any SQLite failure
        """
        if not self._opened:
            raise StoreUnavailable("Vector store is not open. Call open() first.")
        try:
            return await asyncio.to_thread(func, self.db_path, *args)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Vector store operation failed: {e}") from e

    async def upsert(self, source: str, records: Sequence[EmbeddingRecord]) -> int:
        """Replace every record of ``source`` with ``records``.

        The delete and the insert commit together, so readers see either the
        previous generation or the new one. Concurrent upserts of the same
        source are serialised.

        Args:
            source: Source key
            records: Complete new chunk set for the source

        Returns:
            Number of records inserted

        Raises:
            ValueError: If a record belongs to another source or is a zero vector
            DimensionMismatch: If vector dimensions disagree with each other or
                with the store (the store is left untouched)
            StoreUnavailable: On database failure (nothing is committed)
        """
        if not records:
            await self.delete(source)
            return 0

        for record in records:
            if record.metadata.source != source:
                raise ValueError(
                    f"Record {record.chunk_id} belongs to {record.metadata.source}, "
                    f"not {source}"
                )

        dimension = len(records[0].embedding)
        for record in records:
            if len(record.embedding) != dimension:
                raise DimensionMismatch(dimension, len(record.embedding))

        vectors = np.array([r.embedding for r in records], dtype=np.float32)
        _normalise(vectors)  # reject zero vectors before touching the store

        created_at = datetime.now(timezone.utc)
        rows = [
            (
                record.chunk_id,
                source,
                record.content,
                vector.tobytes(),
                dimension,
                json.dumps(record.metadata.to_dict()),
                (record.created_at or created_at).isoformat(),
            )
            for record, vector in zip(records, vectors)
        ]

        async with self._lock_for(source):
            replaced = await self._run(db.replace_source, source, rows, dimension)

        logger.info(
            "source_upserted",
            source=source,
            records_inserted=len(rows),
            records_replaced=replaced,
            dimension=dimension,
        )

        return len(rows)

    async def search(
        self, query_vector: Sequence[float], k: int = None
    ) -> List[SearchResult]:
        """Rank stored chunks by cosine distance to a query vector.

        Args:
            query_vector: Query embedding
            k: Number of results (default from config)

        Returns:
            Up to ``k`` results, ascending by distance; ties keep insertion order

        Raises:
            ValueError: If k is not positive or the query is a zero vector
            DimensionMismatch: If the query dimension differs from the store's
            StoreUnavailable: On database failure
        """
        if k is None:
            k = config.RETRIEVAL_TOP_K
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        rows = await self._run(db.fetch_all_records)
        if not rows:
            return []

        dimension = rows[0]["dimension"]
        if len(query_vector) != dimension:
            raise DimensionMismatch(dimension, len(query_vector))

        query = _normalise(np.array([query_vector], dtype=np.float32))
        vectors = np.vstack(
            [np.frombuffer(row["embedding"], dtype=np.float32) for row in rows]
        )

        index = faiss.IndexFlatIP(dimension)
        index.add(_normalise(vectors))
        scores, positions = index.search(query, len(rows))
        scores, positions = scores[0], positions[0]

        # Full ranking, then re-sort so equal scores keep row (insertion) order
        order = np.lexsort((positions, -scores))

        results = []
        for i in order[:k]:
            row = rows[int(positions[i])]
            results.append(
                SearchResult(
                    chunk_id=row["chunk_id"],
                    content=row["content"],
                    metadata=ChunkMetadata.from_dict(json.loads(row["metadata_json"])),
                    created_at=datetime.fromisoformat(row["created_at"]),
                    distance=float(1.0 - scores[i]),
                )
            )

        logger.info(
            "vector_search_completed",
            top_k=k,
            candidates=len(rows),
            results_found=len(results),
            top_distance=results[0].distance if results else None,
        )

        return results

    async def delete(self, source: str) -> int:
        """Remove all records of a source. Unknown sources are a no-op.

        Returns:
            Number of records deleted
        """
        async with self._lock_for(source):
            deleted = await self._run(db.delete_source, source)

        logger.info("source_deleted", source=source, records_deleted=deleted)
        return deleted

    async def clear(self) -> int:
        """Remove every record.

        Returns:
            Number of records deleted
        """
        deleted = await self._run(db.clear_all)
        logger.warning("vector_store_cleared", records_deleted=deleted)
        return deleted

    async def stats(self) -> StoreStats:
        """Get statistics about the vector store."""
        raw = await self._run(db.get_stats)

        return StoreStats(
            total_records=raw["total_records"],
            total_sources=raw["total_sources"],
            file_types=raw["file_types"],
            last_updated=(
                datetime.fromisoformat(raw["last_updated"])
                if raw["last_updated"]
                else None
            ),
            dimension=raw["dimension"],
        )

    async def sources(self) -> List[str]:
        """List the distinct sources currently stored."""
        return await self._run(db.list_sources)

    async def has_source(self, source: str) -> bool:
        """Check whether any record exists for a source."""
        return bool(await self._run(db.list_sources, source))
