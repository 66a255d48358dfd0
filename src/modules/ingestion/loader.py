"""Read source files into plain text ready for chunking."""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = structlog.get_logger()

_H1 = re.compile(r"^#\s+(.+)$", re.MULTILINE)


@dataclass
class LoadedDocument:
    """Extracted text of one source file.

    ``source`` is the bare filename; it becomes the chunk id prefix and the
    ``sourceFile`` metadata of every chunk cut from this document.
    """

    content: str
    source: str
    file_path: Path
    title: str
    document_type: str  # markdown | text | pdf
    page_count: int = 1
    raw_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return len(self.content.split())


class DocumentLoadError(Exception):
    """A source file is missing, unsupported or unreadable."""

    def __init__(self, message: str, file_path: Path) -> None:
        self.file_path = file_path
        super().__init__(message)


def _read_utf8(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise DocumentLoadError(f"Failed to decode file as UTF-8: {e}", file_path) from e
    except OSError as e:
        raise DocumentLoadError(f"Failed to read file: {e}", file_path) from e


def _load_markdown(file_path: Path) -> LoadedDocument:
    content = _read_utf8(file_path)
    heading = _H1.search(content)
    return LoadedDocument(
        content=content,
        source=file_path.name,
        file_path=file_path,
        title=heading.group(1).strip() if heading else file_path.stem,
        document_type="markdown",
    )


def _load_text(file_path: Path) -> LoadedDocument:
    return LoadedDocument(
        content=_read_utf8(file_path),
        source=file_path.name,
        file_path=file_path,
        title=file_path.stem,
        document_type="text",
    )


def _load_pdf(file_path: Path) -> LoadedDocument:
    """One output line per page, whitespace inside a page collapsed.

    Non-empty entries of the PDF info dictionary are kept as raw metadata
    with the leading slash stripped from their keys.
    """
    try:
        reader = PdfReader(str(file_path))
        page_texts = [page.extract_text() or "" for page in reader.pages]
        info = reader.metadata or {}
        raw_metadata = {
            str(key).lstrip("/"): str(value).strip()
            for key, value in info.items()
            if str(value).strip()
        }
    except (PdfReadError, OSError, ValueError) as e:
        raise DocumentLoadError(f"Failed to read PDF: {e}", file_path) from e

    return LoadedDocument(
        content="\n".join(" ".join(text.split()) for text in page_texts),
        source=file_path.name,
        file_path=file_path,
        title=raw_metadata.get("Title") or file_path.stem,
        document_type="pdf",
        page_count=len(page_texts),
        raw_metadata=raw_metadata,
    )


_LOADERS: dict[str, Callable[[Path], LoadedDocument]] = {
    ".md": _load_markdown,
    ".txt": _load_text,
    ".pdf": _load_pdf,
}

SUPPORTED_EXTENSIONS = tuple(_LOADERS)


def load_document(file_path: Path) -> LoadedDocument:
    """Load a markdown, text or PDF file.

    Markdown titles come from the first ``# `` heading, PDF titles from the
    document info; otherwise the filename stem is used.

    Raises:
        DocumentLoadError: If the file is missing, has an unsupported
            extension, or cannot be decoded.
    """
    if not file_path.exists():
        raise DocumentLoadError(f"File not found: {file_path}", file_path)

    suffix = file_path.suffix.lower()
    load = _LOADERS.get(suffix)
    if load is None:
        raise DocumentLoadError(
            f"Unsupported file format: {suffix}. "
            f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}",
            file_path,
        )

    doc = load(file_path)
    logger.debug(
        "document_loaded",
        source=doc.source,
        title=doc.title,
        document_type=doc.document_type,
        page_count=doc.page_count,
        content_length=len(doc.content),
    )
    return doc


def list_documents(documents_path: Path) -> list[Path]:
    """Supported files directly inside ``documents_path``, sorted by name."""
    if not documents_path.is_dir():
        return []
    return sorted(
        (
            path
            for path in documents_path.iterdir()
            if path.is_file() and path.suffix.lower() in _LOADERS
        ),
        key=lambda p: p.name.lower(),
    )
