"""Unit tests for batch transcription."""

from pathlib import Path

import pytest
from conftest import FakeResponse, job_routes, page_doc

from charm.errors import JobError
from charm.jobs.batch import BatchReport, BatchItem, read_batch_list, transcribe_batch
from charm.jobs.client import FailurePolicy
from charm.jobs.workflows import JobSettings, OutputFormat
from charm.logging.run_logger import RunLogger
from charm.transport import CONVERSIONS_PATH

COMPLETE = FakeResponse(200, {"status": "complete"})


@pytest.fixture
def settings(no_sleep):
    return JobSettings(poll_interval=1.0, sleep=no_sleep.append)


def make_inputs(tmp_path, *names):
    paths = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(name.encode())
        paths.append(path)
    return paths


class TestReadBatchList:
    def test_skips_blanks_and_comments(self, tmp_path):
        (tmp_path / "docs").mkdir()
        list_file = tmp_path / "batch.txt"
        list_file.write_text("# scans\n\ndocs/a.pdf\n  /abs/b.pdf  \n")

        assert read_batch_list(list_file) == [tmp_path / "docs" / "a.pdf", Path("/abs/b.pdf")]

    def test_missing_list(self, tmp_path):
        with pytest.raises(OSError):
            read_batch_list(tmp_path / "nope.txt")


class TestBatchReport:
    def test_exit_code_ignores_degraded(self):
        report = BatchReport([BatchItem("a", "succeeded"), BatchItem("b", "degraded")])
        assert report.exit_code == 0
        report.items.append(BatchItem("c", "failed"))
        assert report.exit_code == 1
        assert report.to_dict()["failed"] == 1


class TestTranscribeBatch:
    def test_strict_stops_at_first_failure(self, transport, session, settings, tmp_path):
        inputs = make_inputs(tmp_path, "a.pdf", "b.pdf")
        job_routes(session, CONVERSIONS_PATH, "j1", [COMPLETE], FakeResponse(500, text="down"))

        with pytest.raises(JobError):
            transcribe_batch(transport, inputs, settings=settings)

        assert session.paths("POST") == [CONVERSIONS_PATH]
        assert not (tmp_path / "a.pdf.doc.json").exists()

    def test_continue_records_unreadable_input(self, transport, session, settings, tmp_path):
        inputs = make_inputs(tmp_path, "a.pdf") + [tmp_path / "missing.pdf"]
        job_routes(session, CONVERSIONS_PATH, "j1", [COMPLETE], FakeResponse(200, page_doc("da", ["A"])))
        seen = []

        report = transcribe_batch(
            transport, inputs, settings=settings, policy=FailurePolicy.CONTINUE, on_item=seen.append
        )

        assert [item.status for item in report.items] == ["succeeded", "failed"]
        assert report.items[1].category == "io"
        assert report.exit_code == 1
        assert seen == report.items
        assert (tmp_path / "a.pdf.doc.json").exists()

    def test_output_dir_and_markdown(self, transport, session, settings, tmp_path):
        inputs = make_inputs(tmp_path, "a.pdf")
        out = tmp_path / "out"
        out.mkdir()
        job_routes(session, CONVERSIONS_PATH, "j1", [COMPLETE], FakeResponse(200, page_doc("da", ["Alpha"])))

        report = transcribe_batch(
            transport, inputs, settings=settings, output_format=OutputFormat.MARKDOWN, output_dir=out
        )

        assert report.items[0].output_path == str(out / "a.md")
        assert "Alpha" in (out / "a.md").read_text()

    def test_run_log_events(self, transport, session, settings, tmp_path):
        inputs = make_inputs(tmp_path, "a.pdf")
        job_routes(session, CONVERSIONS_PATH, "j1", [COMPLETE], FakeResponse(200, page_doc("da", ["A"])))
        run_logger = RunLogger(tmp_path / "logs" / "run.jsonl", run_id="r1")

        transcribe_batch(transport, inputs, settings=settings, run_logger=run_logger)

        events = run_logger.read()
        assert [e["event"] for e in events] == ["batch_started", "item_succeeded", "batch_finished"]
        assert all(e["run_id"] == "r1" for e in events)
        assert events[-1]["succeeded"] == 1
