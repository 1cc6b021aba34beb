"""Document loading for the ingest pipeline.

Handles:
- File type detection from the extension
- Plain text and Markdown (YAML frontmatter is stripped)
- Text extraction from JSON and YAML documents
"""
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Sequence
import yaml
import structlog

from docqa import config
from docqa.errors import EmptyContent, UnsupportedFileType

logger = structlog.get_logger()

# Regex for YAML frontmatter (must be at start of file)
FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

# Keyed strings at least this long are emitted as "key: value"
KEYED_VALUE_MIN_LENGTH = 10


@dataclass
class Document:
    """A source file's text and the metadata shared by all of its chunks."""

    source: str
    text: str
    file_type: str
    size: int
    last_modified: datetime


def detect_file_type(path: Path) -> str:
    """Return the lower-case extension without the dot ("" if none)."""
    return path.suffix.lower().lstrip(".")


def extract_text(value: Any) -> List[str]:
    """Collect the strings of a parsed JSON/YAML value in document order.

    Mappings emit long string values as ``"key: value"`` and recurse into
    everything else; sequences recurse item by item; bare strings are
    emitted as-is. Numbers, booleans and nulls carry no text.
    """
    parts: List[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, str):
            parts.append(node)
        elif isinstance(node, dict):
            for key, item in node.items():
                if isinstance(item, str) and len(item) > KEYED_VALUE_MIN_LENGTH:
                    parts.append(f"{key}: {item}")
                else:
                    walk(item)
        elif isinstance(node, (list, tuple)):
            for item in node:
                walk(item)

    walk(value)
    return parts


def strip_frontmatter(content: str) -> str:
    """Remove a leading YAML frontmatter block from Markdown text.

    A block that is not valid YAML is left in place.
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return content

    try:
        yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning(
            "frontmatter_parse_error",
            error=str(e),
            yaml_preview=match.group(1)[:100],
        )
        return content

    return content[match.end():]


class DocumentLoader:
    """Reads supported files into Document objects."""

    def __init__(self, supported_types: Sequence[str] = None):
        self.supported_types = tuple(supported_types or config.SUPPORTED_EXTENSIONS)

    def is_supported(self, path: Path) -> bool:
        return detect_file_type(path) in self.supported_types

    def load(self, path: Path) -> Document:
        """Read a file and extract its text.

        Args:
            path: File to read

        Returns:
            Document keyed by the resolved absolute path

        Raises:
            UnsupportedFileType: If the extension is not supported
            EmptyContent: If no text remains after extraction
            OSError, UnicodeDecodeError, ValueError, yaml.YAMLError: If the file
                cannot be read or parsed
        """
        path = Path(path)
        file_type = detect_file_type(path)

        if file_type not in self.supported_types:
            raise UnsupportedFileType(str(path), file_type)

        stat = path.stat()
        raw = path.read_text(encoding="utf-8")

        if file_type == "json":
            text = "\n\n".join(extract_text(json.loads(raw)))
        elif file_type in ("yaml", "yml"):
            text = "\n\n".join(extract_text(yaml.safe_load(raw)))
        elif file_type == "md":
            text = strip_frontmatter(raw)
        else:
            text = raw

        text = text.strip()
        if not text:
            raise EmptyContent(str(path.resolve()))

        document = Document(
            source=str(path.resolve()),
            text=text,
            file_type=file_type,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

        logger.debug(
            "document_loaded",
            source=document.source,
            file_type=file_type,
            size=document.size,
            content_length=len(text),
        )

        return document
