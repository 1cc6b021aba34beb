"""SQLite persistence for embedding records.

One table holds every embedding record:
- chunk identifier (unique), source key and chunk text
- the embedding as a float32 blob plus its dimension
- metadata JSON and creation timestamp

All helpers open their own short-lived connection. Writes that replace a
source run inside a single ``BEGIN IMMEDIATE`` transaction.
"""
import sqlite3
from pathlib import Path
from typing import List, Dict, Any, Optional, Sequence, Tuple
import structlog

from docqa.errors import DimensionMismatch

logger = structlog.get_logger()

# (chunk_id, source, content, embedding_blob, dimension, metadata_json, created_at)
RecordRow = Tuple[str, str, str, bytes, int, str, str]


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    The connection runs in autocommit mode so transactions are explicit.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(str(db_path), timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Path) -> None:
    """Initialize the database schema.

    Creates the embeddings table and its source index if they don't exist,
    and switches the journal to WAL so readers never block on a writer.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chunk_id TEXT NOT NULL UNIQUE,
                source TEXT NOT NULL,
                content TEXT NOT NULL,
                embedding BLOB NOT NULL,
                dimension INTEGER NOT NULL,
                metadata_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_source
            ON embeddings(source)
        """)
        logger.info("database_initialized", db_path=str(db_path))

    except sqlite3.Error as e:
        logger.error("database_init_failed", error=str(e), db_path=str(db_path))
        raise
    finally:
        conn.close()


def replace_source(
    db_path: Path, source: str, rows: Sequence[RecordRow], dimension: int
) -> int:
    """Atomically replace every record of a source with a new set.

    The dimension check against the rest of the store happens inside the
    write transaction, so two writers cannot establish different dimensions.

    Args:
        db_path: Database file
        source: Source key whose records are replaced
        rows: New records for the source
        dimension: Dimension of every vector in ``rows``

    Returns:
        Number of records removed from the previous generation

    Raises:
        DimensionMismatch: If other sources were stored with another dimension
        sqlite3.Error: On any database failure (nothing is committed)
    """
    conn = get_connection(db_path)

    try:
        conn.execute("BEGIN IMMEDIATE")

        existing = conn.execute(
            "SELECT dimension FROM embeddings WHERE source != ? LIMIT 1",
            (source,),
        ).fetchone()
        if existing is not None and existing["dimension"] != dimension:
            raise DimensionMismatch(existing["dimension"], dimension)

        deleted = conn.execute(
            "DELETE FROM embeddings WHERE source = ?", (source,)
        ).rowcount

        conn.executemany("""
            INSERT INTO embeddings (
                chunk_id, source, content, embedding,
                dimension, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """, rows)

        conn.execute("COMMIT")
        return deleted

    except Exception as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error("source_replace_failed", error=str(e), source=source)
        raise
    finally:
        conn.close()


def delete_source(db_path: Path, source: str) -> int:
    """Delete all records of a source.

    Returns:
        Number of records deleted (0 if the source is unknown)
    """
    conn = get_connection(db_path)

    try:
        return conn.execute(
            "DELETE FROM embeddings WHERE source = ?", (source,)
        ).rowcount

    except sqlite3.Error as e:
        logger.error("source_delete_failed", error=str(e), source=source)
        raise
    finally:
        conn.close()


def clear_all(db_path: Path) -> int:
    """Delete every record.

    Returns:
        Number of records deleted
    """
    conn = get_connection(db_path)

    try:
        conn.execute("BEGIN IMMEDIATE")
        count = conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]
        conn.execute("DELETE FROM embeddings")
        conn.execute("COMMIT")

        logger.info("embeddings_cleared", count=count)
        return count

    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error("embeddings_clear_failed", error=str(e))
        raise
    finally:
        conn.close()


def fetch_all_records(db_path: Path) -> List[sqlite3.Row]:
    """Read every record in insertion order."""
    conn = get_connection(db_path)

    try:
        return conn.execute("""
            SELECT
                id, chunk_id, source, content, embedding,
                dimension, metadata_json, created_at
            FROM embeddings
            ORDER BY id
        """).fetchall()

    except sqlite3.Error as e:
        logger.error("records_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_stats(db_path: Path) -> Dict[str, Any]:
    """Aggregate counts over the stored records.

    Returns:
        Dict with total_records, total_sources, file_types, last_updated
        and dimension
    """
    conn = get_connection(db_path)

    try:
        row = conn.execute("""
            SELECT
                COUNT(*) AS total_records,
                COUNT(DISTINCT source) AS total_sources,
                MAX(created_at) AS last_updated,
                MAX(dimension) AS dimension
            FROM embeddings
        """).fetchone()

        file_types = [
            r[0]
            for r in conn.execute("""
                SELECT DISTINCT json_extract(metadata_json, '$.fileType')
                FROM embeddings
                WHERE json_extract(metadata_json, '$.fileType') IS NOT NULL
                ORDER BY 1
            """).fetchall()
        ]

        return {
            "total_records": row["total_records"],
            "total_sources": row["total_sources"],
            "file_types": file_types,
            "last_updated": row["last_updated"],
            "dimension": row["dimension"],
        }

    except sqlite3.Error as e:
        logger.error("stats_query_failed", error=str(e))
        raise
    finally:
        conn.close()


def list_sources(db_path: Path, source: Optional[str] = None) -> List[str]:
    """List distinct sources, optionally restricted to one exact key."""
    conn = get_connection(db_path)

    try:
        if source is None:
            rows = conn.execute(
                "SELECT DISTINCT source FROM embeddings ORDER BY source"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT DISTINCT source FROM embeddings WHERE source = ?",
                (source,),
            ).fetchall()
        return [r[0] for r in rows]

    except sqlite3.Error as e:
        logger.error("sources_query_failed", error=str(e))
        raise
    finally:
        conn.close()
