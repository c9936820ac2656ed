from collections.abc import Sequence

from sqlalchemy import Insert, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studentpipe.db_models import Student, utc_now
from studentpipe.schemas import StudentRecord


def student_exists(db: Session, student_id: int) -> bool:
    stmt = select(Student.id).where(Student.student_id == student_id).limit(1)
    return db.execute(stmt).scalar_one_or_none() is not None


def get_student(db: Session, student_id: int) -> Student | None:
    stmt = select(Student).where(Student.student_id == student_id)
    return db.execute(stmt).scalar_one_or_none()


def count_students(db: Session) -> int:
    return db.execute(select(func.count()).select_from(Student)).scalar_one()


def _student_row(record: StudentRecord) -> dict[str, object]:
    return {
        "student_id": record.student_id,
        "first_name": record.first_name,
        "last_name": record.last_name,
        "dob": record.date_of_birth,
        "class_name": record.class_name,
        "score": record.score,
        "created_at": utc_now(),
    }


def _insert_ignoring_conflicts(db: Session) -> Insert:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(Student).on_conflict_do_nothing(index_elements=["student_id"])
    if dialect == "sqlite":
        return sqlite.insert(Student).on_conflict_do_nothing(index_elements=["student_id"])
    raise NotImplementedError(f"bulk upsert is not supported for dialect '{dialect}'")


def bulk_insert_students(db: Session, records: Sequence[StudentRecord]) -> int:
    if not records:
        return 0

    stmt = _insert_ignoring_conflicts(db).returning(Student.student_id)
    inserted = db.execute(stmt, [_student_row(record) for record in records]).scalars().all()
    db.commit()
    return len(inserted)


def insert_students_one_by_one(db: Session, records: Sequence[StudentRecord]) -> int:
    inserted = 0
    for record in records:
        db.add(Student(**_student_row(record)))
        try:
            db.commit()
        except IntegrityError:
            # Unique student_id makes a repeated insert a no-op.
            db.rollback()
            continue
        inserted += 1
    return inserted
