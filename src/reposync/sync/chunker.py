"""Paragraph-aligned chunking of fetched documents."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from reposync.sync.models import DocumentContent, TextChunk

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_OVERLAP",
    "TextChunker",
    "build_chunk_id",
    "chunk_document",
    "chunk_documents",
    "split_paragraphs",
]

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200

# Blank-line runs, or the start of a Markdown heading line.
_PARAGRAPH_BOUNDARY = re.compile(r"\n\s*\n|(?=^#{1,6}\s)", re.MULTILINE)
_PARAGRAPH_JOINER = "\n\n"


def split_paragraphs(content: str) -> list[str]:
    """Split ``content`` into stripped, non-empty paragraphs.

    Example:
        >>> split_paragraphs("intro\\n# Title\\nbody\\n\\n\\nmore")
        ['intro', '# Title\\nbody', 'more']
    """

    pieces = (piece.strip() for piece in _PARAGRAPH_BOUNDARY.split(content))
    return [piece for piece in pieces if piece]


def build_chunk_id(repository_name: str, file_name: str, index: int) -> str:
    """Return the deterministic chunk id for ``index`` within a document.

    Example:
        >>> build_chunk_id("acme/api", "README.md", 2)
        'acme_api_README.md_2'
    """

    return f"{repository_name.replace('/', '_')}_{file_name}_{index}"


def _validate_sizes(chunk_size: int, overlap: int) -> None:
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")


def _overlap_seed(buffer: str, overlap: int) -> str:
    if overlap == 0:
        return ""
    return buffer[-overlap:]


def _split_text(content: str, chunk_size: int, overlap: int) -> list[str]:
    pieces: list[str] = []
    buffer = ""
    for paragraph in split_paragraphs(content):
        if buffer and len(buffer) + len(paragraph) > chunk_size:
            pieces.append(buffer)
            buffer = _overlap_seed(buffer, overlap)
        buffer += paragraph + _PARAGRAPH_JOINER

    tail = buffer.strip()
    if tail:
        pieces.append(tail)
    return pieces


def _chunk_metadata(document: DocumentContent) -> dict[str, str]:
    return {
        "repository": document.repository_name,
        "file_path": document.file_path,
        "file_name": document.file_name,
        "file_type": document.file_type.value,
        "sha": document.sha or "",
    }


def chunk_document(
    document: DocumentContent,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[TextChunk]:
    """Split ``document`` into overlapping chunks.

    Paragraphs accumulate into a buffer until the next one would push it past
    ``chunk_size``; the buffer is then emitted and the next one is seeded
    with its trailing ``overlap`` characters. A paragraph larger than
    ``chunk_size`` is emitted whole.

    Returns:
        Chunks in document order with ``total_chunks`` filled in. Empty or
        missing content yields an empty list.

    Raises:
        ValueError: If ``chunk_size`` is below 1, ``overlap`` is negative, or
            ``overlap`` is not smaller than ``chunk_size``. Such an overlap
            carries every closed chunk whole into the next one, so chunks
            would grow with each paragraph instead of sliding forward.
    """

    _validate_sizes(chunk_size, overlap)
    if not document.content:
        return []

    pieces = _split_text(document.content, chunk_size, overlap)
    total = len(pieces)
    metadata = _chunk_metadata(document)
    return [
        TextChunk(
            chunk_id=build_chunk_id(
                document.repository_name,
                document.file_name,
                index,
            ),
            content=piece,
            chunk_index=index,
            total_chunks=total,
            metadata=dict(metadata),
        )
        for index, piece in enumerate(pieces)
    ]


def chunk_documents(
    documents: Iterable[DocumentContent],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[TextChunk]:
    """Chunk every document, concatenating results in input order."""

    chunks: list[TextChunk] = []
    for document in documents:
        chunks.extend(
            chunk_document(document, chunk_size=chunk_size, overlap=overlap)
        )
    return chunks


@dataclass(frozen=True, slots=True)
class TextChunker:
    """Chunker bound to fixed sizing, as used by the orchestrator."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP

    def __post_init__(self) -> None:
        _validate_sizes(self.chunk_size, self.overlap)

    def chunk(self, document: DocumentContent) -> list[TextChunk]:
        return chunk_document(
            document,
            chunk_size=self.chunk_size,
            overlap=self.overlap,
        )

    def chunk_all(self, documents: Iterable[DocumentContent]) -> list[TextChunk]:
        return chunk_documents(
            documents,
            chunk_size=self.chunk_size,
            overlap=self.overlap,
        )
