from collections.abc import Iterator
from datetime import date, timedelta
from random import Random

from studentpipe.schemas import StudentRecord


FIRST_NAMES = (
    "John", "Jane", "Michael", "Sarah", "David", "Emily", "James", "Jessica",
    "Robert", "Ashley", "William", "Amanda", "Christopher", "Jennifer", "Matthew",
    "Lisa", "Anthony", "Michelle", "Mark", "Kimberly", "Donald", "Amy", "Steven",
    "Angela", "Andrew", "Helen", "Kenneth", "Deborah", "Paul", "Dorothy",
)

LAST_NAMES = (
    "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis",
    "Rodriguez", "Martinez", "Hernandez", "Lopez", "Gonzalez", "Wilson", "Anderson",
    "Thomas", "Taylor", "Moore", "Jackson", "Martin", "Lee", "Perez", "Thompson",
    "White", "Harris", "Sanchez", "Clark", "Ramirez", "Lewis", "Robinson",
)

CLASS_NAMES = ("Class1", "Class2", "Class3", "Class4", "Class5")

SCORE_MIN = 55
SCORE_MAX = 75
DOB_START = date(2000, 1, 1)
DOB_END = date(2010, 12, 31)


def random_student(student_id: int, rng: Random) -> StudentRecord:
    dob_days = (DOB_END - DOB_START).days
    return StudentRecord(
        student_id=student_id,
        first_name=rng.choice(FIRST_NAMES),
        last_name=rng.choice(LAST_NAMES),
        date_of_birth=DOB_START + timedelta(days=rng.randint(0, dob_days)),
        class_name=rng.choice(CLASS_NAMES),
        score=rng.randint(SCORE_MIN, SCORE_MAX),
    )


def generate_records(count: int, *, start_id: int = 1, rng: Random | None = None) -> Iterator[StudentRecord]:
    if count < 0:
        raise ValueError(f"record count must not be negative: {count}")
    if start_id < 1:
        raise ValueError(f"student ids start at 1, got {start_id}")

    source = rng or Random()
    return (random_student(student_id, source) for student_id in range(start_id, start_id + count))
