"""Flatten a document into Markdown."""

import json
from typing import Any

from charm.core.document import PAGES_GROUP, Document

PAGE_SEPARATOR = "\n\n---\n\n"


def _comment(label: str, payload: dict[str, Any]) -> str:
    body = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    # "-->" inside the payload would close the comment early
    body = body.replace("-->", "--&gt;")
    return f"<!-- {label}: {body} -->"


def select_content_group(doc: Document) -> str | None:
    """Pick the chunk group whose chunks carry the document text.

    Order of preference: the document's ``content_chunk_group``, then
    ``pages``, then the first group present.
    """
    named = doc.content_chunk_group
    if named and doc.chunk_group(named):
        return named
    if doc.chunk_group(PAGES_GROUP):
        return PAGES_GROUP
    for group, chunks in doc.chunks.items():
        if chunks:
            return group
    return None


def document_to_markdown(
    doc: Document,
    chunk_group: str | None = None,
    include_metadata: bool = True,
) -> str:
    """Render a document as Markdown.

    Chunks of the content group are emitted in reading order, each preceded
    by an HTML comment holding its metadata, and separated by horizontal
    rules. A document without chunks falls back to its top-level content.

    Args:
        doc: Document to render.
        chunk_group: Group to render; chosen with ``select_content_group``
            when omitted.
        include_metadata: Emit HTML-comment metadata headers.
    """
    parts: list[str] = []
    if include_metadata:
        parts.append(_comment("document", {"id": doc.id, "metadata": doc.metadata}))

    group = chunk_group or select_content_group(doc)
    chunks = doc.chunk_group(group) if group else []

    if not chunks:
        if doc.content:
            parts.append(doc.content.strip())
        return "\n\n".join(parts).rstrip() + "\n"

    pages = []
    for position, chunk in enumerate(chunks):
        lines = []
        if include_metadata:
            lines.append(_comment(f"{group} {position + 1}", chunk.metadata))
        lines.append(chunk.content.strip())
        pages.append("\n\n".join(lines))
    parts.append(PAGE_SEPARATOR.join(pages))
    return "\n\n".join(parts).rstrip() + "\n"


def payload_to_markdown(data: dict[str, Any], include_metadata: bool = True) -> str:
    """Markdown of an arbitrary conversion payload.

    Accepts a ``markdownContent`` field, a full document (flattened with
    ``document_to_markdown``) or a bare ``text`` field.

    Raises:
        ValueError: if no text can be located.
    """
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    if isinstance(data.get("markdownContent"), str):
        return data["markdownContent"]
    if isinstance(data.get("chunks"), dict) or isinstance(data.get("content"), str):
        return document_to_markdown(Document.from_dict(data), include_metadata=include_metadata)
    if isinstance(data.get("text"), str):
        return data["text"]
    raise ValueError(
        "Could not find markdown content. Expected fields: markdownContent, content, text, or chunks."
    )
