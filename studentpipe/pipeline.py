from collections.abc import Callable
from dataclasses import replace
import logging
from pathlib import Path
from random import Random
import time
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session, sessionmaker

from studentpipe.config import Settings
from studentpipe.csv_loader import CsvToDatabaseLoader
from studentpipe.generator import generate_records
from studentpipe.progress import ProgressRegistry, reporter_for
from studentpipe.scheduler import start_progress_sweeper
from studentpipe.schemas import FileOperationResult, LoadResult, ProgressSnapshot
from studentpipe.sheet_converter import SheetSource, SheetToCsvConverter
from studentpipe.sheet_writer import StreamingSheetWriter
from studentpipe.tasks import OperationHandle, OperationLauncher, new_operation_id


logger = logging.getLogger(__name__)

SHEET_SUFFIX = ".xlsx"
CSV_SUFFIX = ".csv"


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def resolve_file_name(directory: Path, requested: str | None, *, suffix: str, default: str) -> str:
    if requested is None or not requested.strip():
        return default

    name = Path(requested.strip()).name
    if not name.lower().endswith(suffix):
        name += suffix
    # Best effort only: another writer can still claim the name before we open it.
    if (directory / name).exists():
        name = f"{name[: -len(suffix)]}-{_epoch_millis()}{suffix}"
    return name


def converted_file_name(source_name: str | None) -> str:
    if not source_name:
        return "processed-students.csv"
    return f"{Path(source_name).stem}-processed{CSV_SUFFIX}"


class PipelineService:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        registry: ProgressRegistry | None = None,
        launcher: OperationLauncher | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.registry = registry or ProgressRegistry(max_entries=settings.progress_max_entries)
        self.launcher = launcher or OperationLauncher()
        self.sheet_writer = StreamingSheetWriter(
            window_rows=settings.sheet_window_rows,
            progress_interval=settings.progress_interval,
            log_interval=settings.generate_log_interval,
        )
        self.converter = SheetToCsvConverter(
            progress_interval=settings.progress_interval,
            log_interval=settings.convert_log_interval,
        )
        self.loader = CsvToDatabaseLoader(
            session_factory,
            batch_size=settings.load_batch_size,
            log_interval=settings.load_log_interval,
            progress_interval=settings.progress_interval,
        )
        self._sweeper: BackgroundScheduler | None = None

    @property
    def data_dir(self) -> Path:
        return Path(self.settings.data_dir)

    def generate(
        self,
        count: int,
        file_name: str | None = None,
        operation_id: str | None = None,
        *,
        rng: Random | None = None,
    ) -> FileOperationResult:
        if count < 0:
            raise ValueError(f"record count must not be negative: {count}")

        reporter = reporter_for(self.registry, operation_id)
        reporter.start(count)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            reporter.fail(f"Generation failed: {exc}")
            raise

        name = resolve_file_name(
            self.data_dir,
            file_name,
            suffix=SHEET_SUFFIX,
            default=f"students-{count}-{_epoch_millis()}{SHEET_SUFFIX}",
        )
        path = (self.data_dir / name).resolve()
        logger.info("generating sheet", extra={"records": count, "path": str(path), "operation_id": operation_id})

        written = self.sheet_writer.write(generate_records(count, rng=rng), path, total=count, reporter=reporter)
        return FileOperationResult(str(path), name, written, "EXCEL_GENERATION", operation_id)

    def convert(
        self,
        source: SheetSource,
        source_name: str | None = None,
        operation_id: str | None = None,
    ) -> FileOperationResult:
        if source_name is None and isinstance(source, (str, Path)):
            source_name = Path(source).name

        reporter = reporter_for(self.registry, operation_id)
        reporter.start(0)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            reporter.fail(f"Conversion failed: {exc}")
            raise

        name = resolve_file_name(
            self.data_dir,
            converted_file_name(source_name),
            suffix=CSV_SUFFIX,
            default="processed-students.csv",
        )
        path = (self.data_dir / name).resolve()
        logger.info("converting sheet", extra={"source": source_name, "path": str(path), "operation_id": operation_id})

        written = self.converter.convert(source, path, reporter=reporter)
        return FileOperationResult(str(path), name, written, "EXCEL_TO_CSV", operation_id)

    def load(self, source: str | Path, operation_id: str | None = None) -> LoadResult:
        reporter = reporter_for(self.registry, operation_id)
        reporter.start(0)
        logger.info("loading csv", extra={"source": str(source), "operation_id": operation_id})

        result = self.loader.load(source, reporter=reporter)
        return replace(result, operation_id=operation_id)

    def start_generate(
        self,
        count: int,
        file_name: str | None = None,
        operation_id: str | None = None,
        *,
        rng: Random | None = None,
    ) -> OperationHandle:
        operation_id = operation_id or new_operation_id()
        self.registry.start(operation_id, count)
        return self._launch(operation_id, lambda: self.generate(count, file_name, operation_id, rng=rng))

    def start_convert(
        self,
        source: SheetSource,
        source_name: str | None = None,
        operation_id: str | None = None,
    ) -> OperationHandle:
        operation_id = operation_id or new_operation_id()
        self.registry.start(operation_id, 0)
        return self._launch(operation_id, lambda: self.convert(source, source_name, operation_id))

    def start_load(self, source: str | Path, operation_id: str | None = None) -> OperationHandle:
        operation_id = operation_id or new_operation_id()
        self.registry.start(operation_id, 0)
        return self._launch(operation_id, lambda: self.load(source, operation_id))

    def get_progress(self, operation_id: str) -> ProgressSnapshot | None:
        return self.registry.get(operation_id)

    def remove_progress(self, operation_id: str) -> bool:
        self.launcher.forget(operation_id)
        return self.registry.remove(operation_id)

    def start_sweeper(self) -> BackgroundScheduler:
        if self._sweeper is None:
            self._sweeper = start_progress_sweeper(self.settings, self.registry, self.launcher)
        return self._sweeper

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.shutdown(wait=False)
            self._sweeper = None

    def _launch(self, operation_id: str, fn: Callable[[], Any]) -> OperationHandle:
        def run() -> Any:
            try:
                return fn()
            except Exception as exc:
                # No-op when the worker already recorded the failure.
                self.registry.fail(operation_id, f"Failed: {exc}")
                raise

        return self.launcher.launch(operation_id, run)
