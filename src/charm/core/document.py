"""Document object model shared by every charm workflow.

A document is a JSON object with an ``id``, optional whole-document
``content``, an open ``metadata`` mapping, and ``chunks``: a mapping of
chunk-group name to an ordered list of chunks. Chunk ids encode lineage as
``{parent}/{group}@{index}``.
"""

import hashlib
import json
import os
import re
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from charm.errors import DocumentIOError

PAGES_GROUP = "pages"

_CHUNK_ID_RE = re.compile(r"^(?P<parent>.*)/(?P<group>[^/@]+)@(?P<index>\d+)$")

# Keys handled explicitly; anything else is carried through in ``extra``.
_CHUNK_KEYS = ("id", "parent", "start", "length", "content", "metadata", "annotations")
_DOCUMENT_KEYS = ("id", "content", "metadata", "chunks")


def _metadata(data: dict[str, Any], owner: str) -> dict[str, Any]:
    metadata = data.get("metadata")
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValueError(f"{owner} 'metadata' must be a JSON object, got {type(metadata).__name__}")
    return dict(metadata)


def chunk_id(parent: str, group: str, index: int) -> str:
    """Build the lineage-encoding id of chunk ``index`` in ``group``."""
    return f"{parent}/{group}@{index}"


def parse_chunk_id(value: str) -> tuple[str, str, int] | None:
    """Split a chunk id into (parent, group, index), or None if malformed."""
    match = _CHUNK_ID_RE.match(value)
    if not match:
        return None
    return match.group("parent"), match.group("group"), int(match.group("index"))


def sha256_hex(data: bytes) -> str:
    """Content address for raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: str | Path) -> str:
    """SHA-256 of a file's exact bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1 << 20), b""):
            digest.update(block)
    return digest.hexdigest()


@dataclass
class Chunk:
    """One addressable sub-unit of a document, usually a page.

    Attributes:
        id: ``{parent}/{group}@{index}``.
        parent: Id of the owning document.
        content: The chunk's text.
        metadata: Open mapping scoped to this chunk (page number, confidence, ...).
        start: Optional offset into the parent's content stream.
        length: Optional length of the view into the parent's content.
        annotations: Derived commentary that does not affect identity.
    """

    id: str
    parent: str
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    start: int | None = None
    length: int | None = None
    annotations: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def index(self) -> int | None:
        parsed = parse_chunk_id(self.id)
        return parsed[2] if parsed else None

    @property
    def page_number(self) -> int | None:
        return self.metadata.get("page_number")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary, omitting absent optional fields."""
        data: dict[str, Any] = {"id": self.id, "parent": self.parent}
        if self.start is not None:
            data["start"] = self.start
        if self.length is not None:
            data["length"] = self.length
        data["content"] = self.content
        data["metadata"] = self.metadata
        if self.annotations is not None:
            data["annotations"] = self.annotations
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        """Deserialize from dictionary.

        Raises:
            ValueError: if ``data``, its ``metadata`` or its ``annotations`` is
                not a JSON object.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Chunk must be a JSON object, got {type(data).__name__}")
        annotations = data.get("annotations")
        if annotations is not None and not isinstance(annotations, dict):
            raise ValueError(f"Chunk 'annotations' must be a JSON object, got {type(annotations).__name__}")
        return cls(
            id=data.get("id", ""),
            parent=data.get("parent", ""),
            content=data.get("content") or "",
            metadata=_metadata(data, "Chunk"),
            start=data.get("start"),
            length=data.get("length"),
            annotations=annotations,
            extra={k: v for k, v in data.items() if k not in _CHUNK_KEYS},
        )


@dataclass
class Document:
    """One processed file: text, metadata and named chunk groups."""

    id: str
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    chunks: dict[str, list[Chunk]] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def content_chunk_group(self) -> str | None:
        """Group holding the authoritative content, when the document names one."""
        return self.extra.get("content_chunk_group")

    @content_chunk_group.setter
    def content_chunk_group(self, name: str | None) -> None:
        if name is None:
            self.extra.pop("content_chunk_group", None)
        else:
            self.extra["content_chunk_group"] = name

    @property
    def transcription_status(self) -> str | None:
        return self.metadata.get("transcription_status")

    @property
    def originating_filename(self) -> str | None:
        return self.metadata.get("originating_filename")

    def chunk_group(self, name: str) -> list[Chunk]:
        """Chunks of group ``name`` in reading order (empty if absent)."""
        return self.chunks.get(name, [])

    def set_chunk_group(self, name: str, chunks: list[Chunk]) -> None:
        """Replace the whole value of a chunk group."""
        self.chunks[name] = list(chunks)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data: dict[str, Any] = {"id": self.id}
        if self.content is not None:
            data["content"] = self.content
        data["metadata"] = self.metadata
        data.update(self.extra)
        data["chunks"] = {
            group: [chunk.to_dict() for chunk in chunks]
            for group, chunks in self.chunks.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Document":
        """Deserialize from dictionary.

        Raises:
            ValueError: if ``data`` or its ``metadata`` is not a JSON object,
                ``chunks`` is not a mapping of group name to list, or a chunk
                is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Document must be a JSON object, got {type(data).__name__}")
        raw_chunks = data.get("chunks")
        if raw_chunks is None:
            raw_chunks = {}
        if not isinstance(raw_chunks, dict):
            raise ValueError("Document 'chunks' must map group names to lists")
        chunks = {}
        for group, items in raw_chunks.items():
            if not isinstance(items, list):
                raise ValueError(f"Chunk group '{group}' must be a list")
            chunks[group] = [Chunk.from_dict(item) for item in items]
        return cls(
            id=data.get("id", ""),
            content=data.get("content"),
            metadata=_metadata(data, "Document"),
            chunks=chunks,
            extra={k: v for k, v in data.items() if k not in _DOCUMENT_KEYS},
        )


def validate_document(doc: Document) -> list[str]:
    """Check structural invariants of a document.

    Returns:
        A list of problems; empty when the document is well formed.
    """
    problems = []
    if not doc.id:
        problems.append("document has no id")
    for group, chunks in doc.chunks.items():
        for position, chunk in enumerate(chunks):
            parsed = parse_chunk_id(chunk.id)
            if parsed is None:
                problems.append(f"{group}[{position}]: malformed chunk id '{chunk.id}'")
                continue
            _, id_group, index = parsed
            if id_group != group:
                problems.append(f"{group}[{position}]: id names group '{id_group}'")
            if index != position:
                problems.append(f"{group}[{position}]: id has index {index}")
            if chunk.parent != doc.id:
                problems.append(f"{group}[{position}]: parent '{chunk.parent}' != '{doc.id}'")
    group_name = doc.content_chunk_group
    if group_name is not None and group_name not in doc.chunks:
        problems.append(f"content_chunk_group '{group_name}' has no chunks")
    return problems


def load_document(path: str | Path) -> Document:
    """Load a document from a ``.doc.json`` file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return Document.from_dict(data)
    except (OSError, ValueError) as e:
        raise DocumentIOError(f"Could not read/parse {path}: {e}") from e


def save_document(doc: Document | dict[str, Any], path: str | Path) -> None:
    """Write a document as indented JSON.

    The file is replaced atomically so an existing artifact is never left
    half written.
    """
    data = doc.to_dict() if isinstance(doc, Document) else doc
    write_text_atomic(path, json.dumps(data, indent=2, ensure_ascii=False))


def write_text_atomic(path: str | Path, text: str) -> None:
    """Write ``text`` to ``path`` via a temporary sibling and rename.

    A replaced file keeps its permission bits; a new file gets the usual
    ``0o666`` less the process umask rather than ``mkstemp``'s ``0o600``.
    """
    path = Path(path)
    try:
        mode = _target_mode(path)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise DocumentIOError(f"Could not write {path}: {e}") from e


def _target_mode(path: Path) -> int:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask
