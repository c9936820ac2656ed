from dataclasses import replace
from datetime import datetime
from pathlib import Path
from random import Random

from openpyxl import load_workbook
import pytest

from studentpipe.generator import generate_records
from studentpipe.schemas import CSV_HEADER, ProgressStatus
from studentpipe.sheet_writer import StreamingSheetWriter


def read_rows(path: Path) -> list[tuple[object, ...]]:
    workbook = load_workbook(path, read_only=True)
    try:
        sheet = workbook.worksheets[0]
        sheet.reset_dimensions()
        return [row for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def test_writer_streams_all_records_with_header(tmp_path: Path, recording_reporter) -> None:
    records = list(generate_records(25, rng=Random(3)))
    writer = StreamingSheetWriter(window_rows=10, progress_interval=10)
    path = tmp_path / "students.xlsx"

    written = writer.write(iter(records), path, total=25, reporter=recording_reporter)

    assert written == 25
    rows = read_rows(path)
    assert rows[0] == CSV_HEADER
    assert len(rows) == 26
    first = rows[1]
    assert first[0] == records[0].student_id
    assert first[1] == records[0].first_name
    assert isinstance(first[3], datetime)
    assert first[3].date() == records[0].date_of_birth
    assert first[5] == records[0].score


def test_writer_reports_progress_at_fixed_interval(tmp_path: Path, recording_reporter) -> None:
    writer = StreamingSheetWriter(window_rows=7, progress_interval=10)

    writer.write(generate_records(25, rng=Random(1)), tmp_path / "s.xlsx", total=25, reporter=recording_reporter)

    updates = [event for event in recording_reporter.events if event[0] == "update"]
    assert [event[1] for event in updates] == [10, 20]
    assert updates[0][2] == "Generated 10 of 25 records"
    assert recording_reporter.kinds()[-1] == "complete"
    assert recording_reporter.events[-1][2].startswith("Completed: 25 records generated in")


def test_writer_marks_failure_and_propagates(tmp_path: Path, recording_reporter) -> None:
    def broken_source():
        yield from generate_records(5, rng=Random(1))
        raise RuntimeError("source exploded")

    writer = StreamingSheetWriter(window_rows=2, progress_interval=2)

    with pytest.raises(RuntimeError, match="source exploded"):
        writer.write(broken_source(), tmp_path / "broken.xlsx", total=10, reporter=recording_reporter)

    assert recording_reporter.kinds()[-1] == "fail"
    assert recording_reporter.events[-1][2] == "Generation failed: source exploded"


def test_writer_rejects_non_positive_window() -> None:
    with pytest.raises(ValueError):
        StreamingSheetWriter(window_rows=0)


def test_generate_synthesizes_file_name(service) -> None:
    result = service.generate(12, operation_id="gen-1", rng=Random(5))

    assert result.file_name.startswith("students-12-")
    assert result.file_name.endswith(".xlsx")
    assert result.records_processed == 12
    assert result.operation == "EXCEL_GENERATION"
    assert Path(result.path).exists()
    assert len(read_rows(Path(result.path))) == 13

    snapshot = service.get_progress("gen-1")
    assert snapshot.status == ProgressStatus.COMPLETED
    assert snapshot.processed_units == 12


def test_generate_appends_extension_and_avoids_overwrite(service) -> None:
    first = service.generate(3, file_name="roster", rng=Random(1))
    second = service.generate(3, file_name="roster.xlsx", rng=Random(2))

    assert first.file_name == "roster.xlsx"
    assert second.file_name != "roster.xlsx"
    assert second.file_name.startswith("roster-")
    assert second.file_name.endswith(".xlsx")
    assert Path(first.path).exists()
    assert Path(second.path).exists()


def test_generate_zero_records_writes_header_only(service) -> None:
    result = service.generate(0, file_name="empty")

    assert result.records_processed == 0
    assert read_rows(Path(result.path)) == [CSV_HEADER]


def test_generate_fails_when_data_dir_cannot_be_created(service, temp_workspace: Path) -> None:
    blocker = temp_workspace / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    service.settings = replace(service.settings, data_dir=str(blocker / "data"))

    with pytest.raises(OSError):
        service.generate(5, operation_id="gen-fail")

    snapshot = service.get_progress("gen-fail")
    assert snapshot.status == ProgressStatus.FAILED
    assert snapshot.message.startswith("Generation failed:")


def test_generate_keeps_an_upper_case_extension(service) -> None:
    result = service.generate(2, file_name="ROSTER.XLSX", rng=Random(3))

    assert result.file_name == "ROSTER.XLSX"
    assert Path(result.path).exists()
