from collections.abc import Callable
import logging
import threading
from typing import Any
import uuid


logger = logging.getLogger(__name__)


def new_operation_id() -> str:
    return str(uuid.uuid4())


class OperationHandle:
    def __init__(self, operation_id: str, fn: Callable[[], Any]) -> None:
        self.operation_id = operation_id
        self._fn = fn
        self._result: Any = None
        self._error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, name=f"operation-{operation_id}", daemon=True)

    def _run(self) -> None:
        try:
            self._result = self._fn()
        except Exception as exc:
            # Kept for result(); the progress registry carries the failure to pollers.
            self._error = exc
            logger.error("background operation failed", extra={"operation_id": self.operation_id, "error": str(exc)})

    def start(self) -> "OperationHandle":
        self._thread.start()
        return self

    def done(self) -> bool:
        return self._thread.ident is not None and not self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def exception(self, timeout: float | None = None) -> BaseException | None:
        if not self.join(timeout):
            raise TimeoutError(f"operation {self.operation_id} is still running")
        return self._error

    def result(self, timeout: float | None = None) -> Any:
        error = self.exception(timeout)
        if error is not None:
            raise error
        return self._result


class OperationLauncher:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, OperationHandle] = {}

    def launch(self, operation_id: str, fn: Callable[[], Any]) -> OperationHandle:
        handle = OperationHandle(operation_id, fn)
        with self._lock:
            self._handles[operation_id] = handle
        logger.info("operation launched", extra={"operation_id": operation_id})
        return handle.start()

    def get(self, operation_id: str) -> OperationHandle | None:
        with self._lock:
            return self._handles.get(operation_id)

    def forget(self, operation_id: str) -> None:
        with self._lock:
            self._handles.pop(operation_id, None)

    def prune_finished(self) -> int:
        with self._lock:
            finished = [key for key, handle in self._handles.items() if handle.done()]
            for key in finished:
                del self._handles[key]
        return len(finished)
