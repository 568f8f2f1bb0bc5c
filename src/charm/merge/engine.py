"""N-way reconciliation of independent transcriptions of one document."""

import logging
from collections.abc import Sequence
from typing import Any, Callable

from charm.core.document import PAGES_GROUP, Chunk, Document, chunk_id
from charm.errors import AlignmentError, GenerationError, MergeError
from charm.merge.metadata import reconcile_metadata
from charm.transport import TRANSCRIPT_EXTENSION_PATH, CharmTransport, message_text

logger = logging.getLogger(__name__)

MERGE_TEMPERATURE = 0.2

MERGE_SYSTEM_PROMPT = """
You are given multiple OCR-like Markdown transcriptions of the same page.
Your goal is to merge them into a single best-guess transcription, with inline
<!-- ALT: ... --> comments for differences. Follow these steps:
1. Compare all transcriptions fragment by fragment.
2. If two or more transcriptions agree, that's likely correct.
3. If disagreement, pick the one that seems most accurate, and comment the others as <!-- ALT: ... -->.
4. Preserve Markdown structure from the best source(s).
5. Output only final Markdown + inline comments, no extra commentary.
""".strip()


def check_alignment(docs: Sequence[Document], group: str) -> int:
    """Verify the documents can be merged page by page.

    Returns:
        The shared number of chunks in ``group``.

    Raises:
        AlignmentError: fewer than two documents, or chunk counts differ.
    """
    if len(docs) < 2:
        raise AlignmentError("You must provide at least two documents to merge.")
    counts = [len(doc.chunk_group(group)) for doc in docs]
    if len(set(counts)) != 1:
        raise AlignmentError(
            f'Mismatch in number of chunks for group "{group}" among input docs: {counts}'
        )
    return counts[0]


def build_page_prompt(contents: Sequence[str]) -> str:
    return "".join(
        f"TRANSCRIPTION #{number}:\n\n{content}\n\n"
        for number, content in enumerate(contents, start=1)
    )


class MergeEngine:
    """Merge N transcriptions of the same document into one.

    Pages are reconciled strictly in index order, one request at a time.
    Any page failure abandons the whole merge.

    Args:
        transport: HTTP boundary used for the text-generation endpoint.
        model: Model that performs the reconciliation.
        chunk_group: Group holding the pages in every input document.
        on_page: Called with (index, total) after each page is merged.
    """

    def __init__(
        self,
        transport: CharmTransport,
        model: str,
        chunk_group: str = PAGES_GROUP,
        temperature: float = MERGE_TEMPERATURE,
        endpoint: str = TRANSCRIPT_EXTENSION_PATH,
        on_page: Callable[[int, int], None] | None = None,
    ):
        self.transport = transport
        self.model = model
        self.chunk_group = chunk_group
        self.temperature = temperature
        self.endpoint = endpoint
        self.on_page = on_page

    def page_request(self, contents: Sequence[str]) -> dict[str, Any]:
        return {
            "model": self.model,
            "system": MERGE_SYSTEM_PROMPT,
            "transcript": {
                "messages": [{"role": "user", "content": build_page_prompt(contents)}],
            },
            "options": {
                "response_format": {"type": "text"},
                "temperature": self.temperature,
            },
        }

    def reconcile_page(self, index: int, chunks: Sequence[Chunk]) -> str:
        """Ask the model for the merged Markdown of page ``index``."""
        payload = self.page_request([chunk.content for chunk in chunks])
        try:
            messages = self.transport.extend_transcript(payload, path=self.endpoint)
        except GenerationError as e:
            raise MergeError(f"Merging page #{index + 1} => {e}") from e
        if not messages:
            raise MergeError(f"No assistant message returned for page #{index + 1}.")
        return "\n".join(message_text(m) for m in messages)

    def merge(self, docs: Sequence[Document]) -> Document:
        """Reconcile ``docs`` into one document.

        Raises:
            AlignmentError: before any request, if the documents differ in
                page count.
            MergeError: if any page fails to merge.
        """
        page_count = check_alignment(docs, self.chunk_group)

        base = docs[0]
        merged = Document(
            id=f"merged-{base.id or 'doc'}",
            metadata=reconcile_metadata([doc.metadata for doc in docs]),
        )
        merged.content_chunk_group = self.chunk_group

        pages = []
        for index in range(page_count):
            sources = [doc.chunk_group(self.chunk_group)[index] for doc in docs]
            logger.info("Merging page %d/%d", index + 1, page_count)
            content = self.reconcile_page(index, sources)
            pages.append(
                Chunk(
                    id=chunk_id(merged.id, self.chunk_group, index),
                    parent=merged.id,
                    content=content,
                    metadata=reconcile_metadata([chunk.metadata for chunk in sources]),
                )
            )
            if self.on_page:
                self.on_page(index, page_count)

        merged.set_chunk_group(self.chunk_group, pages)
        return merged
