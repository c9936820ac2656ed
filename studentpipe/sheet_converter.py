from collections.abc import Callable
import csv
from datetime import date, datetime
import logging
from pathlib import Path
import time
from typing import IO, Any
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from studentpipe.errors import SheetReadError
from studentpipe.progress import Reporter
from studentpipe.schemas import CSV_HEADER, StudentRecord


logger = logging.getLogger(__name__)

SCORE_ADJUSTMENT = 10

SheetSource = str | Path | IO[bytes]


def cell_to_int(value: object) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"expected a number, got {value!r}")


def cell_to_text(value: object) -> str:
    if isinstance(value, str):
        text = value.strip()
        if text:
            return text
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    raise ValueError(f"expected text, got {value!r}")


def cell_to_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise ValueError(f"expected a date, got {value!r}")


# One coercion per column, in sheet order.
COLUMN_COERCIONS: tuple[tuple[str, Callable[[object], Any]], ...] = (
    ("studentId", cell_to_int),
    ("firstName", cell_to_text),
    ("lastName", cell_to_text),
    ("DOB", cell_to_date),
    ("class", cell_to_text),
    ("score", cell_to_int),
)


def parse_sheet_row(values: tuple[object, ...]) -> StudentRecord:
    parsed: list[Any] = []
    for index, (column, coerce) in enumerate(COLUMN_COERCIONS):
        value = values[index] if index < len(values) else None
        if value is None:
            raise ValueError(f"missing {column} cell")
        try:
            parsed.append(coerce(value))
        except ValueError as exc:
            raise ValueError(f"invalid {column} cell: {exc}") from exc

    student_id, first_name, last_name, dob, class_name, score = parsed
    if student_id < 1:
        raise ValueError(f"studentId must be positive, got {student_id}")
    return StudentRecord(student_id, first_name, last_name, dob, class_name, score)


class SheetToCsvConverter:
    def __init__(self, *, progress_interval: int = 1000, log_interval: int = 10000) -> None:
        if progress_interval < 1 or log_interval < 1:
            raise ValueError("interval sizes must be positive")
        self.progress_interval = progress_interval
        self.log_interval = log_interval

    def convert(self, source: SheetSource, output_path: Path, *, reporter: Reporter) -> int:
        started = time.monotonic()
        try:
            workbook = _open_workbook(source)
            try:
                written = self._convert_sheet(workbook, output_path, reporter)
            finally:
                workbook.close()
        except Exception as exc:
            reporter.fail(f"Conversion failed: {exc}")
            logger.exception("sheet conversion failed", extra={"output": str(output_path)})
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "sheet conversion completed",
            extra={"written": written, "elapsed_ms": elapsed_ms, "output": str(output_path)},
        )
        reporter.complete(f"Completed: {written:,} records converted in {elapsed_ms:,} ms")
        return written

    def _convert_sheet(self, workbook: Workbook, output_path: Path, reporter: Reporter) -> int:
        sheet = workbook.worksheets[0]
        total = _data_row_count(sheet)
        reporter.start(total)

        read = 0
        written = 0
        with output_path.open("w", encoding="utf-8", newline="") as outfile:
            writer = csv.writer(outfile, quoting=csv.QUOTE_NONE, escapechar="\\", lineterminator="\n")
            writer.writerow(CSV_HEADER)

            for row_number, values in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
                read += 1
                try:
                    record = parse_sheet_row(values)
                except (TypeError, ValueError) as exc:
                    logger.warning("skipping sheet row", extra={"row": row_number, "reason": str(exc)})
                else:
                    adjusted = record.with_score(record.score + SCORE_ADJUSTMENT)
                    writer.writerow(adjusted.to_row())
                    written += 1
                    if written % self.log_interval == 0:
                        logger.info("sheet rows converted", extra={"written": written, "read": read})

                if read % self.progress_interval == 0:
                    reporter.update(read, f"Converted {written:,} of {total:,} records")

        return written


def _open_workbook(source: SheetSource) -> Workbook:
    if isinstance(source, (str, Path)) and not Path(source).exists():
        raise FileNotFoundError(f"sheet file not found: {source}")
    try:
        return load_workbook(source, read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError) as exc:
        raise SheetReadError(f"cannot read workbook: {exc}") from exc


def _data_row_count(sheet: Any) -> int:
    # Stored dimensions are not trusted; count by scanning.
    sheet.reset_dimensions()
    return sum(1 for _ in sheet.iter_rows(min_row=2, values_only=True))
