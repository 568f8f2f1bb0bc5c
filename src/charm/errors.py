"""Error taxonomy for charm.

Every error carries a ``category`` that the CLI prints in its single
``[ERROR]`` line, and that the degradation path records in placeholder
documents.
"""

from typing import Any


class CharmError(Exception):
    """Base class for all charm errors."""

    category = "error"

    def __init__(self, message: str, *, category: str | None = None):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category

    def __str__(self) -> str:
        return self.message


class ConfigError(CharmError):
    """Configuration could not be loaded or is invalid."""

    category = "config"


class SubmissionError(CharmError):
    """Creating a remote job failed (transport, HTTP status or missing job id)."""

    category = "submission"


class JobError(CharmError):
    """A remote job failed, or its status/result could not be retrieved.

    ``category`` is one of ``job_error`` (the server reported an error
    status), ``http_error`` (non-success HTTP response) or ``exception``
    (transport failure or unreadable payload).
    """

    category = "job_error"

    def __init__(
        self,
        message: str,
        *,
        category: str | None = None,
        job_id: str | None = None,
        error_type: str | None = None,
        http_status: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message, category=category)
        self.job_id = job_id
        self.error_type = error_type
        self.http_status = http_status
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "job_id": self.job_id,
            "error_type": self.error_type,
            "http_status": self.http_status,
        }


class JobTimeoutError(JobError, TimeoutError):
    """The job never produced a result (a 202 at fetch time, or too many polls)."""

    category = "timeout"


class AlignmentError(CharmError, ValueError):
    """Documents given to the merge engine are structurally incompatible."""

    category = "alignment"


class MergeError(CharmError):
    """Reconciling a page failed; the whole merge is abandoned."""

    category = "merge"


class GenerationError(CharmError):
    """A synchronous text-generation call failed."""

    category = "http_error"


class DocumentIOError(CharmError, OSError):
    """Reading, parsing or writing a local artifact failed."""

    category = "io"
