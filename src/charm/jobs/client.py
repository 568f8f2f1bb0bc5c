"""Generic submit -> poll -> fetch client for remote jobs.

Transcription, chunking and summarization all follow the same protocol
against the service:

    POST {path}                  -> {"job_id": ...}
    GET  {path}/{job_id}         -> {"status": pending|complete|error, ...}
    GET  {path}/{job_id}/result  -> result payload (or 202 if not ready)

``JobClient`` implements that protocol once. A ``JobKind`` supplies the
per-workflow parts: the endpoint, how progress is described, and how the
result payload is parsed.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

import requests

from charm.errors import JobError, JobTimeoutError, SubmissionError
from charm.transport import CharmTransport

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")

COMPLETE_STATUSES = frozenset({"complete", "completed"})
ERROR_STATUSES = frozenset({"error", "failed"})

PROGRESS_FIELDS = (
    "pages_converted",
    "pages_total",
    "chunks_completed",
    "chunks_total",
    "progress",
)


class JobState(str, Enum):
    """Where a job is in the client's state machine."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    COMPLETE = "complete"
    ERRORED = "errored"
    RESULT_FETCHING = "result_fetching"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class JobPhase(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERRORED = "errored"


class FailurePolicy(str, Enum):
    """What to do when a job fails after submission."""

    STRICT = "strict"
    CONTINUE = "continue"


@dataclass
class JobStatus:
    """One observation of a job's status endpoint."""

    phase: JobPhase
    status: str
    progress: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.phase is not JobPhase.PENDING

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "JobStatus":
        status = str(payload.get("status", "")).lower()
        if status in COMPLETE_STATUSES:
            phase = JobPhase.COMPLETE
        elif status in ERROR_STATUSES:
            phase = JobPhase.ERRORED
        else:
            phase = JobPhase.PENDING
        return cls(
            phase=phase,
            status=status,
            progress={k: payload[k] for k in PROGRESS_FIELDS if k in payload},
            error=payload.get("error"),
            error_type=payload.get("error_type"),
            raw=payload,
        )


@dataclass
class JobRequest:
    """Body of a job creation request.

    With ``files`` the request is sent as multipart form data and
    ``payload`` values become form fields; otherwise ``payload`` is the JSON
    body.
    """

    payload: dict[str, Any] = field(default_factory=dict)
    files: dict[str, tuple[str, bytes]] | None = None


def _identity(payload: dict[str, Any]) -> Any:
    return payload


def _describe_status(status: JobStatus) -> str:
    return f"Status: {status.status}"


@dataclass(frozen=True)
class JobKind(Generic[ResultT]):
    """Per-workflow parameters of the job protocol."""

    name: str
    path: str
    describe_progress: Callable[[JobStatus], str] = _describe_status
    parse_result: Callable[[dict[str, Any]], ResultT] = _identity


class JobClient(Generic[ResultT]):
    """Drives one remote job from submission to a result.

    Args:
        transport: HTTP boundary to the service.
        kind: Workflow parameters (endpoint, progress text, result parser).
        poll_interval: Fixed number of seconds slept before each status check.
        max_polls: Give up with ``JobTimeoutError`` after this many status
            checks; ``None`` polls until a terminal status.
        on_progress: Called with every non-terminal status.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        transport: CharmTransport,
        kind: JobKind[ResultT],
        poll_interval: float = 3.0,
        max_polls: int | None = None,
        on_progress: Callable[[JobStatus], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self.transport = transport
        self.kind = kind
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.on_progress = on_progress
        self._sleep = sleep
        self.state = JobState.IDLE
        self.job_id: str | None = None

    def _status_path(self, job_id: str) -> str:
        return f"{self.kind.path}/{job_id}"

    def _result_path(self, job_id: str) -> str:
        return f"{self.kind.path}/{job_id}/result"

    def submit(self, request: JobRequest) -> str:
        """Create the remote job and return its id.

        Raises:
            SubmissionError: transport failure, non-success response, or no
                ``job_id`` in the response.
        """
        self.state = JobState.SUBMITTING
        try:
            self.job_id = self._create(request)
        except SubmissionError:
            self.state = JobState.ERRORED
            raise
        logger.info("%s job started: job_id=%s", self.kind.name, self.job_id)
        return self.job_id

    def _create(self, request: JobRequest) -> str:
        try:
            if request.files:
                form = {k: str(v) for k, v in request.payload.items() if v is not None}
                response = self.transport.post_multipart(self.kind.path, request.files, form)
            else:
                response = self.transport.post_json(self.kind.path, request.payload)
        except requests.RequestException as e:
            raise SubmissionError(f"Failed to submit {self.kind.name} job: {e}") from e

        if not response.ok:
            raise SubmissionError(
                f"{self.kind.name} job request => HTTP {response.status_code} => {response.text}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise SubmissionError(f"Unreadable {self.kind.name} job response: {e}") from e

        job_id = body.get("job_id") if isinstance(body, dict) else None
        if not job_id:
            raise SubmissionError("Server did not return a job_id.")
        return str(job_id)

    def poll(self, job_id: str) -> JobStatus:
        """Issue one status request.

        Raises:
            JobError: the status could not be retrieved.
        """
        try:
            response = self.transport.get(self._status_path(job_id))
        except requests.RequestException as e:
            raise JobError(
                f"Polling {self.kind.name} job failed: {e}", category="exception", job_id=job_id
            ) from e
        if not response.ok:
            raise JobError(
                f"Poll => HTTP {response.status_code} => {response.text}",
                category="http_error",
                job_id=job_id,
                http_status=response.status_code,
                body=response.text,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise JobError(
                f"Unreadable {self.kind.name} job status: {e}", category="exception", job_id=job_id
            ) from e
        return JobStatus.from_payload(payload if isinstance(payload, dict) else {})

    def wait(self, job_id: str) -> JobStatus:
        """Poll at the fixed interval until the job completes.

        Returns:
            The terminal ``complete`` status.

        Raises:
            JobError: the job reported an error, or polling failed.
            JobTimeoutError: ``max_polls`` was exhausted.
        """
        self.state = JobState.POLLING
        polls = 0
        while True:
            if self.max_polls is not None and polls >= self.max_polls:
                self.state = JobState.ERRORED
                raise JobTimeoutError(
                    f"{self.kind.name} job {job_id} still pending after {polls} polls",
                    job_id=job_id,
                )
            self._sleep(self.poll_interval)
            polls += 1
            try:
                status = self.poll(job_id)
            except JobError:
                self.state = JobState.ERRORED
                raise

            if status.phase is JobPhase.ERRORED:
                self.state = JobState.ERRORED
                raise JobError(
                    status.error or "(Unknown error)",
                    category="job_error",
                    job_id=job_id,
                    error_type=status.error_type,
                )
            if status.phase is JobPhase.COMPLETE:
                self.state = JobState.COMPLETE
                logger.info("%s job %s complete", self.kind.name, job_id)
                return status

            logger.debug("%s job %s: %s", self.kind.name, job_id, status.raw)
            if self.on_progress is not None:
                self.on_progress(status)

    def fetch_result(self, job_id: str) -> ResultT:
        """Retrieve and parse the result of a completed job.

        A 202 here means the result endpoint disagrees with the status
        endpoint; it is reported as a timeout rather than polled again.

        Raises:
            JobTimeoutError: the server answered 202.
            JobError: non-success response, transport failure or an
                unparseable result.
        """
        self.state = JobState.RESULT_FETCHING
        try:
            response = self.transport.get(self._result_path(job_id))
        except requests.RequestException as e:
            self.state = JobState.ERRORED
            raise JobError(
                f"Failed to fetch {self.kind.name} result: {e}", category="exception", job_id=job_id
            ) from e

        if response.status_code == 202:
            self.state = JobState.ERRORED
            raise JobTimeoutError(
                f"{self.kind.name} result still processing (HTTP 202)",
                job_id=job_id,
                http_status=202,
            )
        if not response.ok:
            self.state = JobState.ERRORED
            raise JobError(
                f"HTTP {response.status_code}: {response.text}",
                category="http_error",
                job_id=job_id,
                http_status=response.status_code,
                body=response.text,
            )
        try:
            result = self.kind.parse_result(response.json())
        except ValueError as e:
            self.state = JobState.ERRORED
            raise JobError(
                f"Unreadable {self.kind.name} result: {e}", category="exception", job_id=job_id
            ) from e
        self.state = JobState.DONE
        return result

    def run(
        self,
        request: JobRequest,
        policy: FailurePolicy = FailurePolicy.STRICT,
        fallback: Callable[[JobError], ResultT] | None = None,
    ) -> ResultT:
        """Submit, wait and fetch, in that order.

        Under ``FailurePolicy.CONTINUE`` a ``JobError`` raised after
        submission is handed to ``fallback`` and its return value used as the
        result. Submission failures always propagate.
        """
        if policy is FailurePolicy.CONTINUE and fallback is None:
            raise ValueError("FailurePolicy.CONTINUE requires a fallback")

        job_id = self.submit(request)
        try:
            self.wait(job_id)
            return self.fetch_result(job_id)
        except JobError as e:
            if policy is FailurePolicy.STRICT:
                raise
            logger.warning("%s job %s failed (%s): %s", self.kind.name, job_id, e.category, e)
            self.state = JobState.SYNTHESIZING
            result = fallback(e)
            self.state = JobState.DONE
            return result
