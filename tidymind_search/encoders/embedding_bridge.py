"""Embedding bridge: async ``embed(text)`` over a single background worker.

The bridge owns at most one ``EmbeddingWorker`` at a time. The worker is
created lazily by the first ``embed`` call and is shared by every caller;
requests carry a unique id so concurrent calls are resolved independently.

Lifecycle
- ``idle`` until the first ``embed`` call, then ``loading`` with progress
- ``ready`` once the worker reports the model loaded
- ``error`` when the worker fails to load or dies; every pending and later
  call fails with ``WorkerInitError`` until ``shutdown()``
- ``shutdown()`` terminates the worker and returns to ``idle``
"""

import asyncio
import itertools
import time
from typing import Callable, Dict, List, Optional
import structlog

from libs.common.config import EmbeddingConfig
from libs.common.metrics import MetricsCollector, get_metrics_collector
from ..errors import EmbeddingError, EmbeddingTimeout, WorkerInitError
from ..runtime.lifecycle import LifecycleStore, WorkerLifecycleState, WorkerStatus
from .embedding_worker import EmbeddingWorker, ProcessEmbeddingWorker, WorkerMessage

logger = structlog.get_logger("embedding.bridge")

WorkerFactory = Callable[[], EmbeddingWorker]


class EmbeddingBridge:
    """Process-wide handle to the embedding worker.

    Parameters
    - config: ``EmbeddingConfig`` with model name, device and timeout
    - worker_factory: Builds the worker on first use; defaults to a
      ``ProcessEmbeddingWorker``. Tests inject an in-process fake.
    - lifecycle: Observable lifecycle store (a new one by default)
    - metrics: Metrics collector (process-wide one by default)
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        worker_factory: Optional[WorkerFactory] = None,
        lifecycle: Optional[LifecycleStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.worker_factory = worker_factory or self._default_worker_factory
        self.lifecycle = lifecycle or LifecycleStore()
        self.metrics = metrics or get_metrics_collector()
        self.timeout = self.config.tm_embedding_timeout_seconds
        self.model_name = self.config.tm_embedding_model

        self._worker: Optional[EmbeddingWorker] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._request_ids = itertools.count(1)
        self.workers_created = 0

        self.lifecycle.subscribe(lambda state: self.metrics.set_worker_status(state.status.value))

    def _default_worker_factory(self) -> EmbeddingWorker:
        return ProcessEmbeddingWorker(
            model_name=self.config.tm_embedding_model,
            device=self.config.tm_embedding_device,
            start_method=self.config.tm_embedding_start_method,
        )

    @property
    def state(self) -> WorkerLifecycleState:
        return self.lifecycle.state

    @property
    def is_running(self) -> bool:
        return self._worker is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def embed(self, text: str) -> List[float]:
        """Embed ``text`` with the shared worker.

        Raises
        - ``WorkerInitError`` when the worker cannot start or is in ``error``
        - ``EmbeddingTimeout`` when no answer arrives within the timeout
        - ``EmbeddingError`` when this request's extraction fails
        """
        worker = self._ensure_worker()
        request_id = next(self._request_ids)
        future = self._loop.create_future()
        self._pending[request_id] = future

        start_time = time.perf_counter()
        status = "error"
        try:
            try:
                worker.post({"id": request_id, "text": text})
            except Exception as e:
                raise EmbeddingError(f"Failed to send request to embedding worker: {e}") from e

            try:
                vector = await asyncio.wait_for(future, timeout=self.timeout)
            except asyncio.TimeoutError:
                status = "timeout"
                logger.warning(
                    "Embedding request timed out",
                    request_id=request_id,
                    timeout_seconds=self.timeout,
                )
                raise EmbeddingTimeout(
                    f"Embedding request {request_id} timed out after {self.timeout}s"
                ) from None

            status = "success"
            return vector
        finally:
            self._pending.pop(request_id, None)
            self.metrics.record_embedding(self.model_name, status, time.perf_counter() - start_time)

    async def embed_or_none(self, text: Optional[str]) -> Optional[List[float]]:
        """Embed note content on save; ``None`` for blank text or any failure."""
        if not text or not text.strip():
            return None
        try:
            return await self.embed(text)
        except EmbeddingError as e:
            logger.warning("Embedding generation failed, storing note without embedding", error=str(e))
            return None

    def _ensure_worker(self) -> EmbeddingWorker:
        if self.lifecycle.status == WorkerStatus.ERROR:
            raise WorkerInitError(self.lifecycle.state.error or "Embedding worker is unavailable")

        loop = asyncio.get_running_loop()
        if self._worker is not None:
            if loop is self._loop:
                return self._worker
            # responses for the old loop can never be delivered; start over on this one
            logger.info("Event loop changed, recreating embedding worker")
            self.shutdown()

        self._loop = loop
        self.lifecycle.set_progress(0.0)
        self.workers_created += 1
        self.metrics.record_worker_start()
        try:
            worker = self.worker_factory()
            self._worker = worker
            worker.start(lambda message: self._on_worker_message(worker, message))
        except Exception as e:
            logger.error("Failed to start embedding worker", error=str(e))
            self._fail_worker(f"Failed to start embedding worker: {e}")
            raise WorkerInitError(f"Failed to start embedding worker: {e}") from e

        logger.info("Embedding worker created", model_name=self.model_name)
        return worker

    def _on_worker_message(self, worker: EmbeddingWorker, message: WorkerMessage) -> None:
        """Hand a worker message to the event loop; safe from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._dispatch, worker, message)
        except RuntimeError:
            logger.debug("Event loop closed, dropping worker message", status=message.get("status"))

    def _dispatch(self, worker: EmbeddingWorker, message: WorkerMessage) -> None:
        if worker is not self._worker:
            logger.debug("Ignoring message from retired worker", status=message.get("status"))
            return

        status = message.get("status")
        if status == "progress":
            self.lifecycle.set_progress(message.get("progress", 0.0))
        elif status == "ready":
            self.lifecycle.set_status(WorkerStatus.READY)
            logger.info("Embedding model ready", model_name=self.model_name, dimension=message.get("dimension"))
        elif status == "complete":
            future = self._pending.pop(message.get("id"), None)
            if future is None or future.done():
                logger.debug("Ignoring response for settled request", request_id=message.get("id"))
                return
            future.set_result(list(message.get("output") or []))
        elif status == "error":
            future = self._pending.pop(message.get("id"), None)
            if future is None or future.done():
                return
            logger.error("Embedding generation failed in worker", request_id=message.get("id"), error=message.get("error"))
            future.set_exception(EmbeddingError(message.get("error") or "Embedding generation failed"))
        elif status == "init_error":
            self._fail_worker(message.get("error") or "Embedding model failed to load")
        elif status == "exited":
            self._fail_worker(f"Embedding worker exited unexpectedly (exit code {message.get('exitcode')})")
        else:
            logger.debug("Ignoring unknown worker message", status=status)

    def _fail_worker(self, reason: str) -> None:
        logger.error("Embedding worker failed", reason=reason)
        self.lifecycle.set_status(WorkerStatus.ERROR, error=reason)
        self._reject_pending(WorkerInitError(reason))
        worker, self._worker = self._worker, None
        if worker is not None:
            try:
                worker.terminate()
            except Exception as e:
                logger.warning("Failed to terminate embedding worker", error=str(e))

    def _reject_pending(self, error: EmbeddingError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done() and not future.get_loop().is_closed():
                future.set_exception(error)

    def shutdown(self) -> None:
        """Terminate the worker and reset to ``idle``.

        The next ``embed`` call creates a fresh worker.
        """
        worker, self._worker = self._worker, None
        self._reject_pending(EmbeddingError("Embedding worker shut down"))
        if worker is not None:
            worker.terminate()
            logger.info("Embedding worker shut down")
        self.lifecycle.reset()


_default_bridge: Optional[EmbeddingBridge] = None


def get_embedding_bridge(config: Optional[EmbeddingConfig] = None) -> EmbeddingBridge:
    """Get or create the process-wide embedding bridge."""
    global _default_bridge
    if _default_bridge is None:
        _default_bridge = EmbeddingBridge(config)
    return _default_bridge


def shutdown_embedding_bridge() -> None:
    """Shut down the process-wide bridge if one was created."""
    if _default_bridge is not None:
        _default_bridge.shutdown()
