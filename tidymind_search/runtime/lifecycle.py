"""Observable lifecycle state for the embedding worker.

One writer (the bridge's message handler) publishes immutable
``WorkerLifecycleState`` snapshots; any number of readers poll ``state`` or
subscribe for changes. Subscribers run synchronously on the writer's thread
and must not block; a failing subscriber is logged and skipped.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional
import threading
import structlog

logger = structlog.get_logger("embedding.lifecycle")


class WorkerStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class WorkerLifecycleState:
    status: WorkerStatus = WorkerStatus.IDLE
    progress: float = 0.0
    error: Optional[str] = None


LifecycleListener = Callable[[WorkerLifecycleState], None]


class LifecycleStore:
    """Single-writer, multi-reader container for ``WorkerLifecycleState``."""

    def __init__(self):
        self._state = WorkerLifecycleState()
        self._listeners: List[LifecycleListener] = []
        self._listeners_lock = threading.Lock()

    @property
    def state(self) -> WorkerLifecycleState:
        return self._state

    @property
    def status(self) -> WorkerStatus:
        return self._state.status

    @property
    def progress(self) -> float:
        return self._state.progress

    def subscribe(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_status(self, status: WorkerStatus, error: Optional[str] = None) -> None:
        if status == self._state.status and error == self._state.error:
            return
        progress = 100.0 if status == WorkerStatus.READY else self._state.progress
        if status == WorkerStatus.IDLE:
            progress = 0.0
        self._publish(replace(self._state, status=status, progress=progress, error=error))

    def set_progress(self, progress: float) -> None:
        progress = min(max(float(progress), 0.0), 100.0)
        if self._state.status in (WorkerStatus.READY, WorkerStatus.ERROR):
            return
        if self._state.status != WorkerStatus.LOADING:
            self._publish(WorkerLifecycleState(WorkerStatus.LOADING, progress))
        elif progress != self._state.progress:
            self._publish(replace(self._state, progress=progress))

    def reset(self) -> None:
        self.set_status(WorkerStatus.IDLE)

    def _publish(self, new_state: WorkerLifecycleState) -> None:
        self._state = new_state
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(new_state)
            except Exception as e:
                logger.error("Lifecycle listener failed", error=str(e))
