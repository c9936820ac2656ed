from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from studentpipe.config import Settings
from studentpipe.database import build_session_factory
from studentpipe.pipeline import PipelineService


class RecordingReporter:
    operation_id = "recording"

    def __init__(self) -> None:
        self.events: list[tuple[str, object, str | None]] = []

    def start(self, total_units: int) -> None:
        self.events.append(("start", total_units, None))

    def update(self, processed_units: int, message: str | None = None) -> None:
        self.events.append(("update", processed_units, message))

    def complete(self, message: str) -> None:
        self.events.append(("complete", None, message))

    def fail(self, message: str) -> None:
        self.events.append(("fail", None, message))

    def kinds(self) -> list[str]:
        return [event[0] for event in self.events]


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="studentpipe",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        data_dir=str(temp_workspace / "data"),
        sheet_window_rows=10,
        progress_interval=10,
        generate_log_interval=100,
        convert_log_interval=100,
        load_batch_size=4,
        load_log_interval=100,
        progress_max_entries=50,
        progress_retention_seconds=0,
        progress_sweep_minutes=5,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def service(test_settings: Settings, session_factory: sessionmaker[Session]) -> Generator[PipelineService, None, None]:
    pipeline_service = PipelineService(test_settings, session_factory)
    yield pipeline_service
    pipeline_service.close()


@pytest.fixture()
def recording_reporter() -> RecordingReporter:
    return RecordingReporter()
