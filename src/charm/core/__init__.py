"""Core data models for charm."""

from charm.core.document import (
    Chunk,
    Document,
    chunk_id,
    load_document,
    save_document,
    sha256_hex,
    validate_document,
)
from charm.core.markdown import document_to_markdown

__all__ = [
    "Chunk",
    "Document",
    "chunk_id",
    "document_to_markdown",
    "load_document",
    "save_document",
    "sha256_hex",
    "validate_document",
]
