from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum


CSV_HEADER = ("studentId", "firstName", "lastName", "DOB", "class", "score")


@dataclass(frozen=True)
class StudentRecord:
    student_id: int
    first_name: str
    last_name: str
    date_of_birth: date
    class_name: str
    score: int

    def with_score(self, score: int) -> "StudentRecord":
        return replace(self, score=score)

    def to_row(self) -> list[str]:
        return [
            str(self.student_id),
            self.first_name,
            self.last_name,
            self.date_of_birth.isoformat(),
            self.class_name,
            str(self.score),
        ]


class ProgressStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETED, ProgressStatus.FAILED)


@dataclass(frozen=True)
class ProgressSnapshot:
    operation_id: str
    processed_units: int
    total_units: int
    elapsed_ms: int
    status: ProgressStatus
    message: str
    started_at: datetime

    @property
    def completed(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class FileOperationResult:
    path: str
    file_name: str
    records_processed: int
    operation: str
    operation_id: str | None = None


@dataclass(frozen=True)
class LoadResult:
    records_inserted: int
    records_read: int
    records_skipped: int
    records_failed: int
    file_name: str | None = None
    operation_id: str | None = None
