"""Transcription, chunking and summarization workflows.

Each workflow turns validated parameters into a ``JobRequest``, runs it
through a ``JobClient`` configured with the workflow's ``JobKind``, and
shapes the result into a ``Document``.
"""

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from charm.core.document import Chunk, Document, chunk_id, save_document, write_text_atomic
from charm.core.markdown import document_to_markdown
from charm.errors import DocumentIOError, JobError
from charm.jobs.client import FailurePolicy, JobClient, JobKind, JobRequest, JobStatus
from charm.jobs.degrade import FailureContext, is_degraded, synthesize
from charm.transport import CHUNKINGS_PATH, CONVERSIONS_PATH, SUMMARIES_PATH, CharmTransport

logger = logging.getLogger(__name__)


class OutputMode(str, Enum):
    """Where a derived artifact goes."""

    IN_PLACE = "in-place"  # overwrite the input artifact
    DERIVED_COPY = "derived-copy"  # write a new file next to it


class OutputFormat(str, Enum):
    DOC_JSON = "doc.json"
    MARKDOWN = "md"


SUMMARY_METHODS = ("full", "map", "fold", "delta-fold", "map-merge", "merge")


def _describe_transcription(status: JobStatus) -> str:
    converted = status.progress.get("pages_converted") or 0
    total = status.progress.get("pages_total") or 0
    return f"Progress: {converted}/{total} pages... (status={status.status})"


def _describe_chunking(status: JobStatus) -> str:
    return f"Status: {status.status}, progress={status.progress.get('progress') or 0}%"


def _parse_chunking(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError(f"Chunking result must be a JSON object, got {type(payload).__name__}")
    items = payload.get("chunks")
    if items is None:
        return payload
    if not isinstance(items, list):
        raise ValueError("Chunking result 'chunks' must be a list")
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"chunks[{position}] must be a JSON object")
        data = item.get("chunk_data")
        if data is not None and not isinstance(data, dict):
            raise ValueError(f"chunks[{position}].chunk_data must be a JSON object")
    return payload


def _describe_summarization(status: JobStatus) -> str:
    done = status.progress.get("chunks_completed") or 0
    total = status.progress.get("chunks_total") or 0
    return f"Status: {status.status}, chunks_completed={done}/{total}..."


TRANSCRIPTION = JobKind(
    name="transcription",
    path=CONVERSIONS_PATH,
    describe_progress=_describe_transcription,
    parse_result=Document.from_dict,
)
CHUNKING = JobKind(
    name="chunking",
    path=CHUNKINGS_PATH,
    describe_progress=_describe_chunking,
    parse_result=_parse_chunking,
)
SUMMARIZATION = JobKind(
    name="summarization",
    path=SUMMARIES_PATH,
    describe_progress=_describe_summarization,
    parse_result=Document.from_dict,
)


@dataclass
class JobSettings:
    """Polling behaviour shared by every workflow."""

    poll_interval: float = 3.0
    max_polls: int | None = None
    on_progress: Callable[[JobStatus], None] | None = None
    sleep: Callable[[float], None] | None = None

    def client(self, transport: CharmTransport, kind: JobKind) -> JobClient:
        kwargs: dict[str, Any] = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return JobClient(
            transport,
            kind,
            poll_interval=self.poll_interval,
            max_polls=self.max_polls,
            on_progress=self.on_progress,
            **kwargs,
        )


# Transcription


@dataclass
class TranscriptionOptions:
    """Form options sent with a document conversion job."""

    description: str | None = None
    intent: str | None = None
    graphic_instructions: str | None = None
    detect_document_boundaries: bool = False
    page_numbering: bool = True
    ocr_threshold: float | None = 1.0
    continue_on_failure: bool = False
    input_document_type: str | None = None

    def form_fields(self, model: str) -> dict[str, str]:
        fields = {"model": model}
        if self.description:
            fields["description"] = self.description
        if self.intent:
            fields["intent"] = self.intent
        if self.graphic_instructions:
            fields["graphic_instructions"] = self.graphic_instructions
        if self.detect_document_boundaries:
            fields["detect_document_boundaries"] = "true"
        if not self.page_numbering:
            fields["page_numbering"] = "false"
        if self.ocr_threshold is not None:
            fields["ocr_threshold"] = str(self.ocr_threshold)
        if self.continue_on_failure:
            fields["continue_on_failure"] = "true"
        if self.input_document_type:
            fields["input_document_type"] = self.input_document_type
        return fields


@dataclass
class TranscriptionOutcome:
    document: Document
    degraded: bool = False
    error: JobError | None = None


def default_transcription_output(input_file: str | Path, fmt: OutputFormat) -> Path:
    """``foo.pdf`` -> ``foo.pdf.doc.json`` (or ``foo.md`` for Markdown)."""
    input_file = Path(input_file)
    if fmt is OutputFormat.MARKDOWN:
        return input_file.with_suffix(".md")
    return input_file.with_name(input_file.name + ".doc.json")


def transcribe_file(
    transport: CharmTransport,
    input_file: str | Path,
    options: TranscriptionOptions | None = None,
    settings: JobSettings | None = None,
    policy: FailurePolicy = FailurePolicy.STRICT,
) -> TranscriptionOutcome:
    """Transcribe one PDF/DOCX file into a document.

    Under ``FailurePolicy.CONTINUE`` a failure after submission yields a
    synthesized placeholder document instead of an exception.

    Raises:
        DocumentIOError: the input file could not be read.
        SubmissionError: the job could not be created.
        JobError: the job failed (strict policy only).
    """
    input_file = Path(input_file)
    options = options or TranscriptionOptions()
    settings = settings or JobSettings()
    model = transport.config.model
    try:
        data = input_file.read_bytes()
    except OSError as e:
        raise DocumentIOError(f"Could not read file at {input_file}: {e}") from e

    request = JobRequest(
        payload=options.form_fields(model),
        files={"file": (input_file.name, data)},
    )
    failures: list[JobError] = []

    def degrade(error: JobError) -> Document:
        failures.append(error)
        return synthesize(FailureContext.from_error(error), input_file, model, data=data)

    client = settings.client(transport, TRANSCRIPTION)
    doc = client.run(request, policy=policy, fallback=degrade if policy is FailurePolicy.CONTINUE else None)
    return TranscriptionOutcome(
        document=doc,
        degraded=is_degraded(doc) and bool(failures),
        error=failures[0] if failures else None,
    )


def write_transcription(doc: Document, output_path: str | Path, fmt: OutputFormat) -> Path:
    output_path = Path(output_path)
    if fmt is OutputFormat.MARKDOWN:
        write_text_atomic(output_path, document_to_markdown(doc))
    else:
        save_document(doc, output_path)
    return output_path


# Chunking


def default_chunk_output(input_path: str | Path) -> Path:
    """``foo.json`` -> ``foo.chunk.json``."""
    input_path = Path(input_path)
    name = input_path.name
    if name.lower().endswith(".json"):
        name = name[: -len(".json")]
    return input_path.with_name(name + ".chunk.json")


def shape_chunks(doc: Document, result: dict[str, Any], group: str) -> list[Chunk]:
    """Turn a chunking result into chunks of ``group`` owned by ``doc``.

    Raises:
        ValueError: if the result is not shaped like a chunking result.
    """
    chunks = []
    for index, item in enumerate(_parse_chunking(result).get("chunks") or []):
        data = item.get("chunk_data") or {}
        metadata: dict[str, Any] = {
            "chunk_index": item.get("chunk_index"),
            "title": data.get("title"),
        }
        if doc.originating_filename:
            metadata["originating_filename"] = doc.originating_filename
        chunks.append(
            Chunk(
                id=chunk_id(doc.id, group, index),
                parent=doc.id,
                content=data.get("body") or "",
                metadata=metadata,
            )
        )
    return chunks


def chunk_document(
    transport: CharmTransport,
    doc: Document,
    strategy: str,
    chunk_size: int,
    input_group: str = "all",
    output_group: str = "rechunked",
    mode: OutputMode = OutputMode.DERIVED_COPY,
    settings: JobSettings | None = None,
) -> Document:
    """Re-chunk a document through a remote chunking job.

    With ``OutputMode.IN_PLACE`` the returned document is the input with
    ``output_group`` replaced; with ``DERIVED_COPY`` it is a new document
    carrying only the input's id, content, metadata and the new group.
    """
    if not strategy:
        raise ValueError('You must specify a strategy (e.g. "merge_and_split").')
    if chunk_size <= 0:
        raise ValueError("You must specify a positive chunk size (in tokens).")

    settings = settings or JobSettings()
    request = JobRequest(
        payload={
            "document": doc.to_dict(),
            "strategy": strategy,
            "chunk_size": chunk_size,
            "chunk_group": input_group,
        }
    )
    result = settings.client(transport, CHUNKING).run(request)
    new_chunks = shape_chunks(doc, result, output_group)

    if mode is OutputMode.IN_PLACE:
        updated = copy.deepcopy(doc)
        updated.set_chunk_group(output_group, new_chunks)
        return updated
    return Document(
        id=doc.id,
        content=doc.content or "",
        metadata=copy.deepcopy(doc.metadata),
        chunks={output_group: new_chunks},
    )


# Summarization


@dataclass
class SummaryOptions:
    """Parameters of a summarization job."""

    method: str = "map"
    chunk_group: str = "pages"
    context_chunks_before: int = 0
    context_chunks_after: int = 0
    guidance: str | None = None
    temperature: float | None = None
    annotation_field: str | None = "summary"
    annotation_field_delta: str | None = "summary_delta"
    merge_summaries_guidance: str | None = None
    initial_summary: str | None = None
    json_schema: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.method not in SUMMARY_METHODS:
            raise ValueError(f"Unknown summarization method: {self.method}. Available: {list(SUMMARY_METHODS)}")

    def to_request(self, doc: Document, model: str) -> dict[str, Any]:
        body: dict[str, Any] = {"document": doc.to_dict(), "method": self.method, "model": model}
        if self.method != "full":
            body["chunk_group"] = self.chunk_group
            body["context_chunks_before"] = self.context_chunks_before
            body["context_chunks_after"] = self.context_chunks_after
        optional = {
            "guidance": self.guidance,
            "temperature": self.temperature,
            "annotation_field": self.annotation_field,
            "annotation_field_delta": self.annotation_field_delta,
            "merge_summaries_guidance": self.merge_summaries_guidance,
            "initial_summary": self.initial_summary,
            "json_schema": self.json_schema,
        }
        body.update({k: v for k, v in optional.items() if v is not None and v != ""})
        return body


def default_summary_output(input_path: str | Path) -> Path:
    """``foo.doc.json`` -> ``foo.summarized.doc.json``."""
    input_path = Path(input_path)
    name = input_path.name
    if name.lower().endswith(".doc.json"):
        name = name[: -len(".doc.json")]
    return input_path.with_name(name + ".summarized.doc.json")


def summarize_document(
    transport: CharmTransport,
    doc: Document,
    options: SummaryOptions | None = None,
    settings: JobSettings | None = None,
) -> Document:
    """Summarize a document; the server returns the annotated document."""
    options = options or SummaryOptions()
    settings = settings or JobSettings()
    request = JobRequest(payload=options.to_request(doc, transport.config.model))
    return settings.client(transport, SUMMARIZATION).run(request)


def resolve_output_path(
    input_path: str | Path,
    mode: OutputMode,
    explicit: str | Path | None,
    derived: Callable[[str | Path], Path],
) -> Path:
    """Output location for chunk/summarize given the output mode."""
    if explicit:
        return Path(explicit)
    if mode is OutputMode.IN_PLACE:
        return Path(input_path)
    return derived(input_path)
