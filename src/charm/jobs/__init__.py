"""Remote job orchestration for charm."""

from charm.jobs.client import (
    FailurePolicy,
    JobClient,
    JobKind,
    JobPhase,
    JobRequest,
    JobState,
    JobStatus,
)
from charm.jobs.degrade import FailureContext, is_degraded, synthesize
from charm.jobs.workflows import (
    CHUNKING,
    SUMMARIZATION,
    TRANSCRIPTION,
    JobSettings,
    OutputFormat,
    OutputMode,
    SummaryOptions,
    TranscriptionOptions,
    chunk_document,
    summarize_document,
    transcribe_file,
)
from charm.jobs.batch import BatchItem, BatchReport, read_batch_list, transcribe_batch

__all__ = [
    "FailurePolicy", "JobClient", "JobKind", "JobPhase", "JobRequest", "JobState", "JobStatus",
    "FailureContext", "is_degraded", "synthesize",
    "CHUNKING", "SUMMARIZATION", "TRANSCRIPTION",
    "JobSettings", "OutputFormat", "OutputMode", "SummaryOptions", "TranscriptionOptions",
    "chunk_document", "summarize_document", "transcribe_file",
    "BatchItem", "BatchReport", "read_batch_list", "transcribe_batch",
]
