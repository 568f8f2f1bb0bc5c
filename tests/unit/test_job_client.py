"""Unit tests for the submit/poll/fetch job client."""

import pytest
import requests
from conftest import FakeResponse, job_routes

from charm.errors import JobError, JobTimeoutError, SubmissionError
from charm.jobs.client import (
    FailurePolicy,
    JobClient,
    JobKind,
    JobPhase,
    JobRequest,
    JobState,
    JobStatus,
)

PATH = "/api/charmonizer/v1/chunkings"
KIND = JobKind(name="chunking", path=PATH)

PENDING = FakeResponse(200, {"status": "pending", "progress": 40})
COMPLETE = FakeResponse(200, {"status": "complete"})


def make_client(transport, slept, **kwargs):
    return JobClient(transport, KIND, poll_interval=2.0, sleep=slept.append, **kwargs)


class TestJobStatus:
    def test_complete_aliases(self):
        assert JobStatus.from_payload({"status": "complete"}).phase is JobPhase.COMPLETE
        assert JobStatus.from_payload({"status": "completed"}).phase is JobPhase.COMPLETE

    def test_error_aliases(self):
        status = JobStatus.from_payload({"status": "failed", "error": "bad", "error_type": "ocr"})
        assert status.phase is JobPhase.ERRORED
        assert status.error == "bad"
        assert status.error_type == "ocr"

    def test_anything_else_is_pending(self):
        status = JobStatus.from_payload({"status": "processing", "pages_converted": 2, "pages_total": 5})
        assert status.phase is JobPhase.PENDING
        assert not status.is_terminal
        assert status.progress == {"pages_converted": 2, "pages_total": 5}


class TestJobClient:
    def test_run_happy_path_order(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [PENDING, COMPLETE], FakeResponse(200, {"chunks": []}))
        client = make_client(transport, no_sleep)

        result = client.run(JobRequest(payload={"strategy": "merge_and_split"}))

        assert result == {"chunks": []}
        assert session.paths() == [PATH, f"{PATH}/j1", f"{PATH}/j1", f"{PATH}/j1/result"]
        assert no_sleep == [2.0, 2.0]
        assert client.state is JobState.DONE
        assert client.job_id == "j1"

    def test_json_submission_body(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], FakeResponse(200, {}))
        make_client(transport, no_sleep).run(JobRequest(payload={"chunk_size": 500}))

        method, path, kwargs = session.calls[0]
        assert method == "POST"
        assert kwargs["json"] == {"chunk_size": 500}

    def test_multipart_submission_stringifies_fields(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], FakeResponse(200, {}))
        request = JobRequest(
            payload={"ocr_threshold": 0.5, "intent": None},
            files={"file": ("a.pdf", b"%PDF")},
        )
        make_client(transport, no_sleep).run(request)

        kwargs = session.calls[0][2]
        assert kwargs["files"] == {"file": ("a.pdf", b"%PDF")}
        assert kwargs["data"] == {"ocr_threshold": "0.5"}

    def test_progress_reported_for_pending_only(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [PENDING, PENDING, COMPLETE], FakeResponse(200, {}))
        seen = []
        make_client(transport, no_sleep, on_progress=seen.append).run(JobRequest())

        assert len(seen) == 2
        assert all(s.phase is JobPhase.PENDING for s in seen)

    def test_submission_http_error(self, transport, session, no_sleep):
        session.add("POST", PATH, FakeResponse(500, text="boom"))
        client = make_client(transport, no_sleep)
        with pytest.raises(SubmissionError, match="HTTP 500"):
            client.run(JobRequest())
        assert session.paths("GET") == []
        assert client.state is JobState.ERRORED

    def test_submission_without_job_id(self, transport, session, no_sleep):
        session.add("POST", PATH, FakeResponse(200, {"ok": True}))
        client = make_client(transport, no_sleep)
        with pytest.raises(SubmissionError, match="job_id"):
            client.submit(JobRequest())
        assert client.state is JobState.ERRORED
        assert client.job_id is None

    def test_submission_unreadable_body(self, transport, session, no_sleep):
        session.add("POST", PATH, FakeResponse(200, text="<html>"))
        client = make_client(transport, no_sleep)
        with pytest.raises(SubmissionError, match="Unreadable"):
            client.submit(JobRequest())
        assert client.state is JobState.ERRORED

    def test_submission_transport_failure(self, transport, session, no_sleep):
        session.add("POST", PATH, requests.ConnectionError("refused"))
        client = make_client(transport, no_sleep)
        with pytest.raises(SubmissionError, match="refused"):
            client.submit(JobRequest())
        assert client.state is JobState.ERRORED

    def test_errored_status(self, transport, session, no_sleep):
        job_routes(
            session,
            PATH,
            "j1",
            [FakeResponse(200, {"status": "error", "error": "OCR failed", "error_type": "ocr_error"})],
            FakeResponse(200, {}),
        )
        client = make_client(transport, no_sleep)
        with pytest.raises(JobError, match="OCR failed") as exc_info:
            client.run(JobRequest())

        assert exc_info.value.category == "job_error"
        assert exc_info.value.error_type == "ocr_error"
        assert client.state is JobState.ERRORED
        assert f"{PATH}/j1/result" not in session.paths()

    def test_poll_http_error(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [FakeResponse(503, text="down")], FakeResponse(200, {}))
        with pytest.raises(JobError) as exc_info:
            make_client(transport, no_sleep).run(JobRequest())
        assert exc_info.value.category == "http_error"
        assert exc_info.value.http_status == 503

    def test_fetch_202_is_timeout(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], FakeResponse(202, {"status": "processing"}))
        with pytest.raises(JobTimeoutError) as exc_info:
            make_client(transport, no_sleep).run(JobRequest())
        assert exc_info.value.category == "timeout"

    def test_fetch_http_error(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], FakeResponse(500, text="Internal Server Error"))
        with pytest.raises(JobError, match="HTTP 500: Internal Server Error") as exc_info:
            make_client(transport, no_sleep).run(JobRequest())
        assert exc_info.value.category == "http_error"
        assert exc_info.value.body == "Internal Server Error"

    def test_fetch_transport_failure(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], requests.ConnectionError("reset"))
        with pytest.raises(JobError) as exc_info:
            make_client(transport, no_sleep).run(JobRequest())
        assert exc_info.value.category == "exception"

    def test_fetch_unparseable_result(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], FakeResponse(200, text="<html>"))
        with pytest.raises(JobError, match="Unreadable") as exc_info:
            make_client(transport, no_sleep).run(JobRequest())
        assert exc_info.value.category == "exception"

    def test_max_polls(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [PENDING], FakeResponse(200, {}))
        with pytest.raises(JobTimeoutError, match="after 3 polls"):
            make_client(transport, no_sleep, max_polls=3).run(JobRequest())
        assert session.paths("GET").count(f"{PATH}/j1") == 3

    def test_invalid_poll_interval(self, transport):
        with pytest.raises(ValueError):
            JobClient(transport, KIND, poll_interval=0)


class TestFailurePolicy:
    def test_continue_requires_fallback(self, transport, no_sleep):
        with pytest.raises(ValueError, match="fallback"):
            make_client(transport, no_sleep).run(JobRequest(), policy=FailurePolicy.CONTINUE)

    def test_continue_uses_fallback(self, transport, session, no_sleep):
        job_routes(session, PATH, "j1", [COMPLETE], FakeResponse(500, text="nope"))
        errors = []

        def fallback(error):
            errors.append(error)
            return {"placeholder": True}

        client = make_client(transport, no_sleep)
        result = client.run(JobRequest(), policy=FailurePolicy.CONTINUE, fallback=fallback)

        assert result == {"placeholder": True}
        assert errors[0].category == "http_error"
        assert client.state is JobState.DONE

    def test_continue_does_not_cover_submission(self, transport, session, no_sleep):
        session.add("POST", PATH, FakeResponse(400, text="bad request"))
        with pytest.raises(SubmissionError):
            make_client(transport, no_sleep).run(
                JobRequest(), policy=FailurePolicy.CONTINUE, fallback=lambda e: None
            )
