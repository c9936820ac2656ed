from collections.abc import Iterable
import logging
from pathlib import Path
import time
from typing import Any

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell

from studentpipe.progress import Reporter
from studentpipe.schemas import CSV_HEADER, StudentRecord


logger = logging.getLogger(__name__)

SHEET_TITLE = "Students"
DATE_FORMAT = "yyyy-mm-dd"


class StreamingSheetWriter:
    def __init__(
        self,
        *,
        window_rows: int = 1000,
        progress_interval: int = 1000,
        log_interval: int = 50000,
    ) -> None:
        if window_rows < 1 or progress_interval < 1 or log_interval < 1:
            raise ValueError("window and interval sizes must be positive")
        self.window_rows = window_rows
        self.progress_interval = progress_interval
        self.log_interval = log_interval

    def write(self, records: Iterable[StudentRecord], path: Path, *, total: int, reporter: Reporter) -> int:
        started = time.monotonic()
        written = 0
        workbook = Workbook(write_only=True)
        try:
            sheet = workbook.create_sheet(SHEET_TITLE)
            sheet.append(list(CSV_HEADER))

            window: list[list[object]] = []
            for record in records:
                window.append(self._row(sheet, record))
                written += 1
                if len(window) >= self.window_rows:
                    self._flush(sheet, window)

                if written % self.progress_interval == 0:
                    reporter.update(written, f"Generated {written:,} of {total:,} records")
                if written % self.log_interval == 0:
                    logger.info(
                        "sheet rows generated",
                        extra={"rows": written, "elapsed_ms": _elapsed_ms(started), "path": str(path)},
                    )

            self._flush(sheet, window)
            workbook.save(path)
        except Exception as exc:
            reporter.fail(f"Generation failed: {exc}")
            logger.exception("sheet generation failed", extra={"path": str(path), "rows": written})
            raise
        finally:
            workbook.close()

        elapsed_ms = _elapsed_ms(started)
        logger.info(
            "sheet generation completed",
            extra={"rows": written, "elapsed_ms": elapsed_ms, "path": str(path)},
        )
        reporter.complete(f"Completed: {written:,} records generated in {elapsed_ms:,} ms")
        return written

    def _row(self, sheet: Any, record: StudentRecord) -> list[object]:
        dob = WriteOnlyCell(sheet, value=record.date_of_birth)
        dob.number_format = DATE_FORMAT
        return [
            record.student_id,
            record.first_name,
            record.last_name,
            dob,
            record.class_name,
            record.score,
        ]

    def _flush(self, sheet: Any, window: list[list[object]]) -> None:
        for row in window:
            sheet.append(row)
        window.clear()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
