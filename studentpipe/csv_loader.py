from collections.abc import Sequence
import csv
from dataclasses import dataclass
from datetime import date
import logging
from pathlib import Path
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from studentpipe.errors import MissingHeaderError, StorageError
from studentpipe.progress import Reporter
from studentpipe.schemas import LoadResult, StudentRecord
from studentpipe.student_store import bulk_insert_students, insert_students_one_by_one, student_exists


logger = logging.getLogger(__name__)

STORAGE_SCORE_ADJUSTMENT = 5
RAW_SCORE_RANGE = range(55, 76)
ADJUSTED_SCORE_RANGE = range(65, 86)
MIN_FIELDS = 6


def reconstruct_score(csv_score: int) -> int:
    # 65-85 is checked first, so 65-75 is always read as already adjusted (+10).
    if csv_score in ADJUSTED_SCORE_RANGE:
        return csv_score - 10 + STORAGE_SCORE_ADJUSTMENT
    if csv_score in RAW_SCORE_RANGE:
        return csv_score + STORAGE_SCORE_ADJUSTMENT

    logger.warning("unexpected csv score, treating as raw", extra={"score": csv_score})
    return csv_score + STORAGE_SCORE_ADJUSTMENT


def parse_csv_row(fields: Sequence[str]) -> StudentRecord:
    if len(fields) < MIN_FIELDS:
        raise ValueError(f"expected {MIN_FIELDS} fields, got {len(fields)}")

    values = [field.strip() for field in fields[:MIN_FIELDS]]
    student_id = int(values[0])
    first_name, last_name = values[1], values[2]
    dob = date.fromisoformat(values[3])
    class_name = values[4]
    score = int(values[5])

    if student_id < 1:
        raise ValueError(f"studentId must be positive, got {student_id}")
    if not first_name or not last_name or not class_name:
        raise ValueError(f"empty required field for student {student_id}")
    return StudentRecord(student_id, first_name, last_name, dob, class_name, score)


@dataclass
class _LoadCounts:
    read: int = 0
    inserted: int = 0
    skipped: int = 0
    failed: int = 0


class CsvToDatabaseLoader:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        batch_size: int = 5000,
        log_interval: int = 10000,
        progress_interval: int = 1000,
    ) -> None:
        if batch_size < 1 or log_interval < 1 or progress_interval < 1:
            raise ValueError("batch and interval sizes must be positive")
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.log_interval = log_interval
        self.progress_interval = progress_interval

    def load(self, source: str | Path, *, reporter: Reporter) -> LoadResult:
        path = Path(source)
        started = time.monotonic()
        counts = _LoadCounts()
        try:
            if not path.exists():
                raise FileNotFoundError(f"csv file not found: {path}")
            total = _count_data_lines(path)
            reporter.start(total)
            self._load_rows(path, counts, total, reporter)
        except Exception as exc:
            reporter.fail(f"Load failed: {exc}")
            logger.exception("csv load failed", extra={"source": str(path)})
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "csv load completed",
            extra={
                "source": str(path),
                "read": counts.read,
                "inserted": counts.inserted,
                "skipped": counts.skipped,
                "failed": counts.failed,
                "elapsed_ms": elapsed_ms,
            },
        )
        reporter.complete(
            f"Completed: {counts.inserted:,} records inserted, {counts.skipped:,} skipped, "
            f"{counts.failed:,} failed in {elapsed_ms:,} ms"
        )
        return LoadResult(
            records_inserted=counts.inserted,
            records_read=counts.read,
            records_skipped=counts.skipped,
            records_failed=counts.failed,
            file_name=path.name,
        )

    def _load_rows(self, path: Path, counts: _LoadCounts, total: int, reporter: Reporter) -> None:
        batch: list[StudentRecord] = []
        batch_ids: set[int] = set()

        # Undecodable bytes become U+FFFD instead of aborting the whole file.
        infile = path.open("r", encoding="utf-8", errors="replace", newline="")
        with infile, self.session_factory() as db:
            reader = csv.reader(infile)
            header = next(reader, None)
            if header is None:
                raise MissingHeaderError(f"csv file is empty or has no header: {path}")
            logger.info("csv header read", extra={"header": ",".join(header)})

            for fields in reader:
                if not any(field.strip() for field in fields):
                    continue
                counts.read += 1

                try:
                    record = parse_csv_row(fields)
                except ValueError as exc:
                    counts.failed += 1
                    logger.warning("skipping csv record", extra={"record": counts.read, "reason": str(exc)})
                else:
                    record = record.with_score(reconstruct_score(record.score))
                    if record.student_id in batch_ids or self._exists(db, record.student_id):
                        counts.skipped += 1
                        logger.debug("student already exists, skipping", extra={"student_id": record.student_id})
                    else:
                        batch.append(record)
                        batch_ids.add(record.student_id)

                if len(batch) >= self.batch_size:
                    counts.inserted += self._write_batch(db, batch)
                    batch.clear()
                    batch_ids.clear()

                if counts.read % self.progress_interval == 0:
                    reporter.update(counts.read, f"Processed {counts.read:,} of {total:,} records")
                if counts.read % self.log_interval == 0:
                    logger.info(
                        "csv records processed",
                        extra={"read": counts.read, "inserted": counts.inserted, "skipped": counts.skipped},
                    )

            if batch:
                counts.inserted += self._write_batch(db, batch)

    def _exists(self, db: Session, student_id: int) -> bool:
        try:
            return student_exists(db, student_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"student store is unreachable: {exc}") from exc

    def _write_batch(self, db: Session, batch: list[StudentRecord]) -> int:
        try:
            inserted = bulk_insert_students(db, batch)
            logger.debug("batch inserted", extra={"size": len(batch), "inserted": inserted})
            return inserted
        except (SQLAlchemyError, NotImplementedError) as exc:
            db.rollback()
            logger.error("bulk insert failed, falling back to single inserts", extra={"size": len(batch), "error": str(exc)})

        try:
            inserted = insert_students_one_by_one(db, batch)
            logger.debug("fallback batch inserted", extra={"size": len(batch), "inserted": inserted})
            return inserted
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("single insert fallback failed", extra={"size": len(batch), "error": str(exc)})
            return 0


def _count_data_lines(path: Path) -> int:
    with path.open("r", encoding="utf-8", errors="replace", newline="") as infile:
        lines = sum(1 for line in infile if line.strip())
    return max(0, lines - 1)
