"""Turns files on disk into study documents.

Plain text and markdown are read directly; markdown may carry YAML
frontmatter with a ``title``. PDF and DOCX extraction is delegated to an
extractor registered with ``register_extractor``.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import yaml

from qda_mcp.store.errors import DocumentParseError

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt": "txt", ".md": "txt", ".markdown": "txt"}
BINARY_SUFFIXES = {".pdf": "pdf", ".docx": "docx"}

# Document type -> callable returning the plain text of a file
_extractors: dict[str, Callable[[Path], str]] = {}


@dataclass
class ParsedDocument:
    """Text and metadata ready to be added to a study."""

    title: str
    content: str
    type: str
    size: int


def register_extractor(doc_type: str, extractor: Callable[[Path], str] | None) -> None:
    """Register (or with None, remove) the text extractor for pdf or docx."""
    if doc_type not in BINARY_SUFFIXES.values():
        raise ValueError(f"No extractor slot for document type '{doc_type}'")
    if extractor is None:
        _extractors.pop(doc_type, None)
    else:
        _extractors[doc_type] = extractor


def split_frontmatter(content: str, source: str = "<string>") -> tuple[dict, str]:
    """
    Split YAML frontmatter from markdown content.

    Args:
        content: The full file content
        source: Name used in log messages

    Returns:
        Tuple of (frontmatter dict, body). The dict is empty when there is
        no frontmatter or it is not valid YAML.
    """
    if content.startswith("---"):
        parts = content.split("---", 2)
        if len(parts) >= 3:
            try:
                raw = yaml.safe_load(parts[1])
            except yaml.YAMLError as e:
                logger.debug("Invalid YAML frontmatter in %s: %s", source, e)
                return {}, content
            if isinstance(raw, dict):
                return raw, parts[2].lstrip("\n")
    return {}, content


def parse_document(path: Path) -> ParsedDocument:
    """
    Read a file into a ParsedDocument.

    Args:
        path: File to read

    Returns:
        ParsedDocument whose title is the frontmatter title or the file stem

    Raises:
        DocumentParseError: If the file is missing, unsupported, not UTF-8,
            empty, or its extractor fails.
    """
    path = Path(path)
    if not path.is_file():
        raise DocumentParseError(f"File not found: {path}")

    suffix = path.suffix.lower()
    title = path.stem

    if suffix in TEXT_SUFFIXES:
        doc_type = TEXT_SUFFIXES[suffix]
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise DocumentParseError(f"{path.name} is not valid UTF-8 text") from e
        except OSError as e:
            raise DocumentParseError(f"Cannot read {path.name}: {e}") from e

        if suffix != ".txt":
            frontmatter, content = split_frontmatter(content, path.name)
            if frontmatter.get("title"):
                title = str(frontmatter["title"])

    elif suffix in BINARY_SUFFIXES:
        doc_type = BINARY_SUFFIXES[suffix]
        extractor = _extractors.get(doc_type)
        if extractor is None:
            raise DocumentParseError(f"No text extractor registered for {doc_type} files")
        try:
            content = extractor(path)
        except Exception as e:
            logger.exception("Extractor failed for %s", path.name)
            raise DocumentParseError(f"Failed to extract text from {path.name}: {e}") from e

    else:
        raise DocumentParseError(f"Unsupported file type '{suffix or path.name}'")

    if not content.strip():
        raise DocumentParseError(f"{path.name} contains no text")

    return ParsedDocument(
        title=title,
        content=content,
        type=doc_type,
        size=path.stat().st_size,
    )
