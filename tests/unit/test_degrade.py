"""Unit tests for placeholder documents synthesized after failures."""

import pytest

from charm.core.document import sha256_hex, validate_document
from charm.errors import JobError, JobTimeoutError
from charm.jobs.degrade import (
    FAILURE_CATEGORIES,
    FailureContext,
    is_degraded,
    render_failure_notice,
    synthesize,
)

DATA = b"%PDF-1.4 fake"


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(DATA)
    return path


class TestFailureContext:
    def test_job_error_keeps_upstream_type(self):
        failure = FailureContext.from_error(JobError("OCR failed", error_type="ocr_error"))
        assert failure.category == "job_error"
        assert failure.recorded_error_type == "ocr_error"
        assert failure.message == "OCR failed"

    def test_http_error_message(self):
        error = JobError("x", category="http_error", http_status=500, body="Internal Server Error")
        failure = FailureContext.from_error(error)
        assert failure.message == "HTTP 500: Internal Server Error"
        assert failure.recorded_error_type == "http_error"

    def test_timeout_message(self):
        failure = FailureContext.from_error(JobTimeoutError("still 202", http_status=202))
        assert failure.category == "timeout"
        assert failure.message == "Transcription process timed out"

    def test_unknown_category_becomes_exception(self):
        failure = FailureContext.from_error(JobError("odd", category="mystery"))
        assert failure.category == "exception"

    def test_rejects_unknown_category(self):
        with pytest.raises(ValueError):
            FailureContext(category="mystery", message="x")


class TestSynthesize:
    @pytest.mark.parametrize("category", sorted(FAILURE_CATEGORIES))
    def test_shape_for_every_category(self, input_file, category):
        failure = FailureContext(category=category, message="went wrong", http_status=500)
        doc = synthesize(failure, input_file, "gpt-4o-mini")

        file_hash = sha256_hex(DATA)
        assert doc.id == file_hash
        assert validate_document(doc) == []
        assert is_degraded(doc)

        pages = doc.chunk_group("pages")
        assert len(pages) == 1
        page = pages[0]
        assert page.id == f"{file_hash}/pages@0"
        assert page.content.startswith("<!-- TRANSCRIPTION FAILURE -->")
        assert page.length == len(page.content)
        assert page.metadata["page_number"] == 1
        assert page.metadata["transcription_failed"] is True
        assert page.metadata["text_extraction_method"] == "error_placeholder"
        assert page.annotations["description"]

        error = doc.metadata["transcription_error"]
        assert error["failure_point"] == FAILURE_CATEGORIES[category].failure_point
        assert error["model_used"] == "gpt-4o-mini"

    def test_metadata(self, input_file):
        failure = FailureContext(category="job_error", message="boom", error_type="ocr_error")
        doc = synthesize(failure, input_file, "m")

        assert doc.metadata["mimetype"] == "application/pdf"
        assert doc.metadata["document_sha256"] == doc.id
        assert doc.metadata["size_bytes"] == len(DATA)
        assert doc.metadata["originating_filename"] == "report.pdf"
        assert doc.metadata["transcription_status"] == "failed"
        assert doc.metadata["transcription_error"]["error_type"] == "ocr_error"

    def test_docx_mimetype(self, tmp_path):
        path = tmp_path / "memo.docx"
        path.write_bytes(b"PK")
        doc = synthesize(FailureContext(category="exception", message="x"), path, "m")
        assert doc.metadata["mimetype"].endswith("wordprocessingml.document")

    def test_uses_given_bytes(self, tmp_path):
        doc = synthesize(
            FailureContext(category="timeout", message="x"),
            tmp_path / "gone.pdf",
            "m",
            data=b"abc",
        )
        assert doc.id == sha256_hex(b"abc")


class TestRenderFailureNotice:
    def test_http_notice(self):
        notice = render_failure_notice(
            FailureContext(category="http_error", message="HTTP 500: x", http_status=500), "m"
        )
        assert "# Transcription Result Retrieval Failed" in notice
        assert "**HTTP Status:** 500" in notice
        assert "--continue-on-failure" in notice

    def test_timeout_notice_has_no_message(self):
        notice = render_failure_notice(FailureContext(category="timeout", message="ignored"), "m")
        assert "Processing Timeout" in notice
        assert "ignored" not in notice

    def test_successful_document_is_not_degraded(self):
        from charm.core.document import Document

        assert not is_degraded(Document(id="x", metadata={"transcription_status": "ok"}))
