"""Sequential batch transcription.

Files are processed strictly one after another: each file's submit, poll
and fetch cycle completes (or degrades) before the next file is read.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from charm.errors import CharmError, DocumentIOError
from charm.jobs.client import FailurePolicy
from charm.jobs.workflows import (
    JobSettings,
    OutputFormat,
    TranscriptionOptions,
    default_transcription_output,
    transcribe_file,
    write_transcription,
)
from charm.logging.run_logger import RunLogger
from charm.transport import CharmTransport

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
DEGRADED = "degraded"
FAILED = "failed"


@dataclass
class BatchItem:
    """Outcome for one input file."""

    input_path: str
    status: str
    output_path: str | None = None
    error: str | None = None
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_path": self.input_path,
            "status": self.status,
            "output_path": self.output_path,
            "error": self.error,
            "category": self.category,
        }


@dataclass
class BatchReport:
    items: list[BatchItem] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(SUCCEEDED)

    @property
    def degraded(self) -> int:
        return self._count(DEGRADED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    @property
    def exit_code(self) -> int:
        """0 when every file produced an artifact (degraded ones included)."""
        return 1 if self.failed else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.items),
            "succeeded": self.succeeded,
            "degraded": self.degraded,
            "failed": self.failed,
            "items": [item.to_dict() for item in self.items],
        }


def read_batch_list(list_path: str | Path) -> list[Path]:
    """Read a batch list: one input path per line.

    Blank lines and ``#`` comments are skipped; relative paths are resolved
    against the list file's directory.
    """
    list_path = Path(list_path)
    try:
        lines = list_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise DocumentIOError(f"Could not read batch list {list_path}: {e}") from e

    paths = []
    for line in lines:
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        path = Path(entry).expanduser()
        if not path.is_absolute():
            path = list_path.parent / path
        paths.append(path)
    return paths


def transcribe_batch(
    transport: CharmTransport,
    inputs: list[Path],
    options: TranscriptionOptions | None = None,
    settings: JobSettings | None = None,
    policy: FailurePolicy = FailurePolicy.STRICT,
    output_format: OutputFormat = OutputFormat.DOC_JSON,
    output_dir: str | Path | None = None,
    run_logger: RunLogger | None = None,
    on_item: Callable[[BatchItem], None] | None = None,
) -> BatchReport:
    """Transcribe each input in order, writing one artifact per file.

    Under ``FailurePolicy.STRICT`` the first failure propagates and the
    remaining files are not attempted. Under ``CONTINUE`` job failures
    produce degraded artifacts and failures that leave nothing to write
    (unreadable input, rejected submission) are recorded; the batch always
    runs to the end.
    """
    report = BatchReport()
    if run_logger:
        run_logger.log("batch_started", {"total": len(inputs), "policy": policy.value})

    for index, input_path in enumerate(inputs, start=1):
        logger.info("Batch item %d/%d: %s", index, len(inputs), input_path)
        output_path = default_transcription_output(input_path, output_format)
        if output_dir is not None:
            output_path = Path(output_dir) / output_path.name

        try:
            outcome = transcribe_file(transport, input_path, options, settings, policy)
            write_transcription(outcome.document, output_path, output_format)
        except CharmError as e:
            if policy is FailurePolicy.STRICT:
                raise
            logger.warning("Batch item %s failed: %s", input_path, e)
            item = BatchItem(str(input_path), FAILED, error=str(e), category=e.category)
        else:
            if outcome.degraded:
                error = outcome.error
                item = BatchItem(
                    str(input_path),
                    DEGRADED,
                    output_path=str(output_path),
                    error=str(error) if error else None,
                    category=error.category if error else None,
                )
            else:
                item = BatchItem(str(input_path), SUCCEEDED, output_path=str(output_path))

        report.items.append(item)
        if run_logger:
            run_logger.log(f"item_{item.status}", item.to_dict())
        if on_item:
            on_item(item)

    if run_logger:
        run_logger.log("batch_finished", {k: v for k, v in report.to_dict().items() if k != "items"})
    return report
