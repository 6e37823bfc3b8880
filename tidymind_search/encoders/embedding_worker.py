"""Background embedding worker.

The worker runs in its own process so model loading and inference never block
the caller's event loop. It loads a fixed sentence-transformers model once
(mean pooling followed by L2 normalisation) and then serves requests from a
queue until it receives ``None``.

Wire format (plain dicts, picklable)
- request:  ``{"id": int, "text": str}``
- progress: ``{"status": "progress", "progress": float}``
- ready:    ``{"status": "ready", "dimension": int}``
- result:   ``{"status": "complete", "id": int, "output": list[float]}``
- failure:  ``{"status": "error", "id": int, "error": str}``
- load failure: ``{"status": "init_error", "error": str}``
- process death (emitted by the parent-side listener): ``{"status": "exited", "exitcode": int}``
"""

import multiprocessing
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
import structlog

logger = structlog.get_logger("embedding.worker")

WorkerMessage = Dict[str, Any]
MessageHandler = Callable[[WorkerMessage], None]


class EmbeddingWorker(ABC):
    """A long-lived embedding backend the bridge talks to by message passing.

    ``on_message`` may be invoked from any thread.
    """

    @abstractmethod
    def start(self, on_message: MessageHandler) -> None:
        """Start the worker and begin loading the model."""
        pass

    @abstractmethod
    def post(self, message: WorkerMessage) -> None:
        """Send a request to the worker without waiting for the answer."""
        pass

    @abstractmethod
    def terminate(self) -> None:
        """Stop the worker; no further messages are delivered."""
        pass


def load_model(model_name: str, device: str = "cpu"):
    """Build the fixed feature-extraction pipeline: transformer, mean pooling, normalize."""
    from sentence_transformers import SentenceTransformer, models

    word_embedding = models.Transformer(model_name)
    pooling = models.Pooling(
        word_embedding.get_word_embedding_dimension(),
        pooling_mode="mean",
    )
    return SentenceTransformer(
        modules=[word_embedding, pooling, models.Normalize()],
        device=device,
    )


def run_worker(requests, responses, model_name: str, device: str = "cpu") -> None:
    """Worker process entry point."""
    responses.put({"status": "progress", "progress": 0.0})
    try:
        model = load_model(model_name, device)
        responses.put({"status": "progress", "progress": 90.0})
        model.encode("warmup")
    except Exception as e:
        responses.put({"status": "init_error", "error": f"{type(e).__name__}: {e}"})
        return

    responses.put({"status": "progress", "progress": 100.0})
    responses.put({"status": "ready", "dimension": model.get_sentence_embedding_dimension()})

    while True:
        message = requests.get()
        if message is None:
            break
        request_id = message.get("id")
        try:
            vector = model.encode(message["text"], convert_to_numpy=True)
            responses.put({
                "status": "complete",
                "id": request_id,
                "output": [float(v) for v in vector.tolist()],
            })
        except Exception as e:
            responses.put({"status": "error", "id": request_id, "error": f"{type(e).__name__}: {e}"})


class ProcessEmbeddingWorker(EmbeddingWorker):
    """Runs ``run_worker`` in a child process and relays its responses.

    A daemon listener thread drains the response queue and forwards every
    message to ``on_message``. If the child dies without being asked to, the
    listener reports ``exited`` so the bridge can fail pending requests.

    ``terminate`` never waits on the child: a reaper thread joins it, kills it
    after ``shutdown_grace`` seconds if it is still loading, and closes the
    queues.
    """

    def __init__(
        self,
        model_name: str,
        device: str = "cpu",
        start_method: str = "spawn",
        poll_interval: float = 0.5,
        shutdown_grace: float = 2.0,
    ):
        self.model_name = model_name
        self.device = device
        self.poll_interval = poll_interval
        self.shutdown_grace = shutdown_grace
        self._context = multiprocessing.get_context(start_method)
        self._process = None
        self._requests = None
        self._responses = None
        self._listener: Optional[threading.Thread] = None
        self._reaper: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._on_message: Optional[MessageHandler] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def start(self, on_message: MessageHandler) -> None:
        self._on_message = on_message
        self._requests = self._context.Queue()
        self._responses = self._context.Queue()
        self._process = self._context.Process(
            target=run_worker,
            args=(self._requests, self._responses, self.model_name, self.device),
            name="embedding-worker",
            daemon=True,
        )
        self._process.start()
        self._listener = threading.Thread(
            target=self._listen,
            args=(self._process, self._responses),
            name="embedding-worker-listener",
            daemon=True,
        )
        self._listener.start()
        logger.info(
            "Embedding worker process started",
            model_name=self.model_name,
            pid=self._process.pid,
        )

    def _listen(self, process, responses) -> None:
        while not self._stopping.is_set():
            try:
                message = responses.get(timeout=self.poll_interval)
            except queue.Empty:
                if not process.is_alive():
                    if not self._stopping.is_set():
                        self._on_message({"status": "exited", "exitcode": process.exitcode})
                    return
                continue
            except (EOFError, OSError, ValueError):
                return
            self._on_message(message)

    def post(self, message: WorkerMessage) -> None:
        if self._requests is None or self._stopping.is_set():
            raise RuntimeError("Embedding worker is not running")
        self._requests.put(message)

    def terminate(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        self._stopping.set()
        try:
            self._requests.put_nowait(None)
        except (ValueError, OSError, queue.Full):
            pass
        self._reaper = threading.Thread(
            target=self._reap,
            args=(process, self._requests, self._responses, self._listener),
            name="embedding-worker-reaper",
            daemon=True,
        )
        self._reaper.start()

    def _reap(self, process, requests, responses, listener) -> None:
        process.join(timeout=self.shutdown_grace)
        if process.is_alive():
            # still inside load_model, so the stop sentinel was never read
            process.terminate()
            process.join(timeout=self.shutdown_grace)
            requests.cancel_join_thread()
        if listener is not None and listener is not threading.current_thread():
            listener.join(timeout=self.poll_interval * 2)
        requests.close()
        responses.close()
        logger.info("Embedding worker process terminated", exitcode=process.exitcode)

    def wait_terminated(self, timeout: Optional[float] = None) -> bool:
        """Block until the reaper finished; for tests and interpreter shutdown."""
        if self._reaper is None:
            return True
        self._reaper.join(timeout)
        return not self._reaper.is_alive()
