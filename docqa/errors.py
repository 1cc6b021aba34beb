"""Error types raised by the document Q&A pipeline.

Per-document errors (``UnsupportedFileType``, ``EmptyContent``, and an
embedding ``ProviderError`` or ``DimensionMismatch`` during ingestion) are
recorded in the ingest report and the batch continues. ``StoreUnavailable``
aborts the whole call.
"""
from typing import Optional


class DocQAError(Exception):
    """Base class for all pipeline errors."""


class UnsupportedFileType(DocQAError):
    """The file extension is not one the loader can read."""

    def __init__(self, path: str, file_type: str):
        self.path = path
        self.file_type = file_type
        super().__init__(f"Unsupported file type '{file_type or '<none>'}': {path}")


class EmptyContent(DocQAError):
    """The document has no usable text."""

    def __init__(self, path: str, detail: str = "no text content"):
        self.path = path
        super().__init__(f"Empty content ({detail}): {path}")


class DimensionMismatch(DocQAError):
    """A vector does not match the dimensionality of the store."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class ProviderError(DocQAError):
    """The embedding or generation service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StoreUnavailable(DocQAError):
    """The vector store could not be opened, read or written."""
