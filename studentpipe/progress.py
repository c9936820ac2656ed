from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
import logging
import threading
import time

from studentpipe.schemas import ProgressSnapshot, ProgressStatus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry:
    operation_id: str
    total_units: int
    processed_units: int
    status: ProgressStatus
    message: str
    started_at: datetime
    started_mono: float
    changed_mono: float


class ProgressRegistry:
    # Entries are frozen and swapped as a whole under the lock.

    def __init__(self, *, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def start(self, operation_id: str, total_units: int) -> None:
        now = self._clock()
        entry = _Entry(
            operation_id=operation_id,
            total_units=max(0, int(total_units)),
            processed_units=0,
            status=ProgressStatus.PENDING,
            message="Starting operation...",
            started_at=datetime.now(UTC).replace(tzinfo=None),
            started_mono=now,
            changed_mono=now,
        )
        with self._lock:
            if operation_id not in self._entries:
                self._make_room_unlocked()
            self._entries[operation_id] = entry

    def update(self, operation_id: str, processed_units: int, message: str | None = None) -> None:
        with self._lock:
            entry = self._entries.get(operation_id)
            if entry is None or entry.status.is_terminal:
                return
            self._entries[operation_id] = replace(
                entry,
                processed_units=max(entry.processed_units, int(processed_units)),
                status=ProgressStatus.IN_PROGRESS,
                message=entry.message if message is None else message,
                changed_mono=self._clock(),
            )

    def complete(self, operation_id: str, message: str) -> None:
        with self._lock:
            entry = self._entries.get(operation_id)
            if entry is None or entry.status.is_terminal:
                return
            self._entries[operation_id] = replace(
                entry,
                processed_units=entry.total_units,
                status=ProgressStatus.COMPLETED,
                message=message,
                changed_mono=self._clock(),
            )

    def fail(self, operation_id: str, message: str) -> None:
        with self._lock:
            entry = self._entries.get(operation_id)
            if entry is None or entry.status.is_terminal:
                return
            self._entries[operation_id] = replace(
                entry,
                status=ProgressStatus.FAILED,
                message=message,
                changed_mono=self._clock(),
            )

    def get(self, operation_id: str) -> ProgressSnapshot | None:
        with self._lock:
            entry = self._entries.get(operation_id)
        if entry is None:
            return None

        elapsed = self._clock() - entry.started_mono
        return ProgressSnapshot(
            operation_id=entry.operation_id,
            processed_units=entry.processed_units,
            total_units=entry.total_units,
            elapsed_ms=int(elapsed * 1000),
            status=entry.status,
            message=entry.message,
            started_at=entry.started_at,
        )

    def remove(self, operation_id: str) -> bool:
        with self._lock:
            return self._entries.pop(operation_id, None) is not None

    def purge_finished(self, older_than_seconds: float) -> int:
        cutoff = self._clock() - older_than_seconds
        with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.status.is_terminal and entry.changed_mono <= cutoff
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info("purged finished progress entries", extra={"purged": len(stale)})
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _make_room_unlocked(self) -> None:
        overflow = len(self._entries) - self.max_entries + 1
        if overflow <= 0:
            return

        finished = sorted(
            (entry for entry in self._entries.values() if entry.status.is_terminal),
            key=lambda entry: entry.changed_mono,
        )
        for entry in finished[:overflow]:
            del self._entries[entry.operation_id]

        if len(self._entries) >= self.max_entries:
            # Live operations are never evicted.
            logger.warning(
                "progress registry over capacity",
                extra={"entries": len(self._entries), "max_entries": self.max_entries},
            )


class ProgressReporter:
    def __init__(self, registry: ProgressRegistry, operation_id: str) -> None:
        self.registry = registry
        self.operation_id = operation_id

    def start(self, total_units: int) -> None:
        self.registry.start(self.operation_id, total_units)

    def update(self, processed_units: int, message: str | None = None) -> None:
        self.registry.update(self.operation_id, processed_units, message)

    def complete(self, message: str) -> None:
        self.registry.complete(self.operation_id, message)

    def fail(self, message: str) -> None:
        self.registry.fail(self.operation_id, message)


class NullProgressReporter:
    operation_id: str | None = None

    def start(self, total_units: int) -> None:
        pass

    def update(self, processed_units: int, message: str | None = None) -> None:
        pass

    def complete(self, message: str) -> None:
        pass

    def fail(self, message: str) -> None:
        pass


Reporter = ProgressReporter | NullProgressReporter


def reporter_for(registry: ProgressRegistry, operation_id: str | None) -> Reporter:
    if operation_id is None:
        return NullProgressReporter()
    return ProgressReporter(registry, operation_id)
