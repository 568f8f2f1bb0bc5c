"""Placeholder documents for failed transcriptions.

When a transcription fails and the caller asked to continue, a document is
synthesized in place of the server's result. It has the same shape as a
successful transcription (one ``pages`` group with one chunk) so that
downstream tools need no separate code path; consumers tell the two apart
by ``metadata.transcription_status == "failed"``.
"""

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from charm.core.document import PAGES_GROUP, Chunk, Document, chunk_id, sha256_hex
from charm.errors import DocumentIOError, JobError

FAILED_STATUS = "failed"

_DOCX_MIMETYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@dataclass(frozen=True)
class FailureCategory:
    """How one kind of failure is described in the placeholder."""

    name: str
    failure_point: str
    comment: str
    heading: str
    reason: str


FAILURE_CATEGORIES = {
    "job_error": FailureCategory(
        name="job_error",
        failure_point="job_processing",
        comment="This page failed to transcribe due to an error",
        heading="Transcription Failed",
        reason="the transcription process encountered an error",
    ),
    "http_error": FailureCategory(
        name="http_error",
        failure_point="result_retrieval",
        comment="Result retrieval failed with HTTP error",
        heading="Transcription Result Retrieval Failed",
        reason="the result could not be retrieved from the server",
    ),
    "timeout": FailureCategory(
        name="timeout",
        failure_point="processing_timeout",
        comment="Transcription process timed out",
        heading="Transcription Timed Out",
        reason="the transcription process did not complete within the expected timeframe",
    ),
    "exception": FailureCategory(
        name="exception",
        failure_point="exception_during_processing",
        comment="Transcription failed with exception",
        heading="Transcription Exception",
        reason="the transcription process encountered an exception",
    ),
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class FailureContext:
    """What went wrong, captured at the point of failure."""

    category: str
    message: str
    error_type: str | None = None
    http_status: int | None = None
    timestamp: str = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if self.category not in FAILURE_CATEGORIES:
            raise ValueError(f"Unknown failure category: {self.category}")

    @property
    def recorded_error_type(self) -> str:
        """Error type stored in metadata (upstream type for job errors)."""
        if self.category == "job_error":
            return self.error_type or "job_error"
        return self.category

    @classmethod
    def from_error(cls, error: JobError) -> "FailureContext":
        category = error.category if error.category in FAILURE_CATEGORIES else "exception"
        if category == "timeout":
            message = "Transcription process timed out"
        elif category == "http_error" and error.http_status is not None:
            message = f"HTTP {error.http_status}: {error.body or ''}"
        else:
            message = error.message or "Unknown error"
        return cls(
            category=category,
            message=message,
            error_type=error.error_type,
            http_status=error.http_status,
        )


def guess_mimetype(path: str | Path) -> str:
    suffix = Path(path).suffix.lower()
    if suffix == ".pdf":
        return "application/pdf"
    if suffix == ".docx":
        return _DOCX_MIMETYPE
    return mimetypes.guess_type(str(path))[0] or "application/octet-stream"


def render_failure_notice(failure: FailureContext, model: str) -> str:
    """Markdown body explaining the failure."""
    category = FAILURE_CATEGORIES[failure.category]
    lines = [
        "<!-- TRANSCRIPTION FAILURE -->",
        f"<!-- {category.comment} -->",
        "",
        f"# {category.heading}",
        "",
    ]
    if failure.category == "job_error":
        lines.append(f"**Error Type:** {failure.error_type or 'Unknown'}")
    elif failure.category == "http_error":
        lines.append(f"**HTTP Status:** {failure.http_status}")
    elif failure.category == "timeout":
        lines.append("**Error Type:** Processing Timeout")
    else:
        lines.append("**Error Type:** Exception")
    if failure.category != "timeout":
        label = "Error Response" if failure.category == "http_error" else "Error Message"
        lines.append(f"**{label}:** {failure.message}")
    lines += [
        f"**Timestamp:** {failure.timestamp}",
        f"**Model:** {model}",
        "",
        "---",
        "",
        f"*This content was generated because the --continue-on-failure flag was used and {category.reason}.*",
    ]
    return "\n".join(lines)


def synthesize(
    failure: FailureContext,
    input_file: str | Path,
    model: str,
    data: bytes | None = None,
) -> Document:
    """Build a placeholder document for a failed transcription of ``input_file``.

    The document id and ``metadata.document_sha256`` are the SHA-256 of the
    input file's bytes.

    Args:
        failure: Description of the failure.
        input_file: The file whose transcription failed.
        model: Model name that was in use.
        data: The file's bytes if already read; read from disk otherwise.
    """
    input_file = Path(input_file)
    if data is None:
        try:
            data = input_file.read_bytes()
        except OSError as e:
            raise DocumentIOError(f"Could not read file at {input_file}: {e}") from e

    category = FAILURE_CATEGORIES[failure.category]
    file_hash = sha256_hex(data)
    notice = render_failure_notice(failure, model)
    error_type = failure.recorded_error_type

    metadata: dict[str, Any] = {
        "mimetype": guess_mimetype(input_file),
        "document_sha256": file_hash,
        "size_bytes": len(data),
        "originating_filename": input_file.name,
        "transcription_status": FAILED_STATUS,
        "transcription_error": {
            "error_type": error_type,
            "error_message": failure.message,
            "timestamp": failure.timestamp,
            "model_used": model,
            "failure_point": category.failure_point,
        },
    }
    page = Chunk(
        id=chunk_id(file_hash, PAGES_GROUP, 0),
        parent=file_hash,
        start=0,
        length=len(notice),
        content=notice,
        metadata={
            "page_number": 1,
            "text_extraction_method": "error_placeholder",
            "extraction_confidence": 0,
            "model_name": model,
            "isFirstPage": True,
            "originating_filename": input_file.name,
            "originating_file_sha256": file_hash,
            "transcription_failed": True,
            "error_type": error_type,
            "error_message": failure.message,
        },
        annotations={
            "description": (
                "This page contains a transcription failure notice because "
                f"{category.reason}."
            )
        },
    )
    return Document(
        id=file_hash,
        content=notice,
        metadata=metadata,
        chunks={PAGES_GROUP: [page]},
    )


def is_degraded(doc: Document) -> bool:
    return doc.transcription_status == FAILED_STATUS
