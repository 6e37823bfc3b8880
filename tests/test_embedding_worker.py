"""Tests for the embedding worker loop and its process wrapper."""

import asyncio
import multiprocessing
import os
import queue
import signal
import time

import numpy as np
import pytest

from tidymind_search.encoders import embedding_worker
from tidymind_search.encoders.embedding_worker import ProcessEmbeddingWorker, run_worker
from tidymind_search.errors import WorkerInitError
from tidymind_search.runtime.lifecycle import WorkerStatus

requires_fork = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(),
    reason="child process tests patch load_model and rely on fork",
)


class FakeModel:
    def __init__(self, fail_on=(), hang_on=()):
        self.fail_on = set(fail_on)
        self.hang_on = set(hang_on)

    def encode(self, text, convert_to_numpy=True):
        if text in self.fail_on:
            raise ValueError("tokenizer exploded")
        if text in self.hang_on:
            time.sleep(60)
        return np.array([len(text), 1.0, 0.0], dtype=np.float32)

    def get_sentence_embedding_dimension(self):
        return 3


def _drain(responses):
    messages = []
    while not responses.empty():
        messages.append(responses.get_nowait())
    return messages


def _collect_until(received, status, timeout=10.0):
    """Read relayed messages until one with ``status`` arrives."""
    messages = []
    deadline = time.monotonic() + timeout
    while True:
        message = received.get(timeout=max(deadline - time.monotonic(), 0.01))
        messages.append(message)
        if message["status"] == status:
            return messages


def test_run_worker_reports_ready_and_serves_requests(monkeypatch):
    """Test the worker reports progress, becomes ready, and answers by id."""
    monkeypatch.setattr(embedding_worker, "load_model", lambda name, device: FakeModel(fail_on={"boom"}))
    requests, responses = queue.Queue(), queue.Queue()
    requests.put({"id": 7, "text": "hello"})
    requests.put({"id": 8, "text": "boom"})
    requests.put(None)

    run_worker(requests, responses, "fake-model")

    messages = _drain(responses)
    statuses = [m["status"] for m in messages]
    assert statuses == ["progress", "progress", "progress", "ready", "complete", "error"]
    assert [m["progress"] for m in messages[:3]] == [0.0, 90.0, 100.0]
    assert messages[3]["dimension"] == 3
    assert messages[4] == {"status": "complete", "id": 7, "output": [5.0, 1.0, 0.0]}
    assert messages[5]["id"] == 8
    assert "tokenizer exploded" in messages[5]["error"]


def test_run_worker_reports_init_error(monkeypatch):
    """Test a model that fails to load reports init_error and exits."""
    def broken_load(name, device):
        raise OSError("model not found")

    monkeypatch.setattr(embedding_worker, "load_model", broken_load)
    requests, responses = queue.Queue(), queue.Queue()

    run_worker(requests, responses, "missing-model")

    messages = _drain(responses)
    assert messages[0] == {"status": "progress", "progress": 0.0}
    assert messages[-1]["status"] == "init_error"
    assert "OSError: model not found" in messages[-1]["error"]


def test_process_worker_rejects_post_before_start():
    worker = ProcessEmbeddingWorker("fake-model")

    with pytest.raises(RuntimeError):
        worker.post({"id": 1, "text": "hello"})

    # terminate before start is a no-op
    worker.terminate()
    assert worker.wait_terminated(0)


def test_process_worker_rejects_unknown_start_method():
    with pytest.raises(ValueError):
        ProcessEmbeddingWorker("fake-model", start_method="fork-server")


@requires_fork
def test_process_worker_relays_child_messages(monkeypatch):
    """Test ready and complete messages cross from the child to the listener callback."""
    monkeypatch.setattr(embedding_worker, "load_model", lambda name, device: FakeModel())
    received = queue.Queue()
    worker = ProcessEmbeddingWorker("fake-model", start_method="fork", poll_interval=0.05)
    worker.start(received.put)
    try:
        startup = _collect_until(received, "ready")
        worker.post({"id": 1, "text": "hello"})
        result = _collect_until(received, "complete")[-1]
    finally:
        worker.terminate()

    assert startup[-1] == {"status": "ready", "dimension": 3}
    assert result == {"status": "complete", "id": 1, "output": [5.0, 1.0, 0.0]}
    assert worker.wait_terminated(5.0)
    with pytest.raises(ValueError):
        worker._requests.put({"id": 2, "text": "late"})
    with pytest.raises(RuntimeError):
        worker.post({"id": 2, "text": "late"})


@requires_fork
def test_terminate_does_not_wait_for_loading_child(monkeypatch):
    """Test terminate returns at once while the child is still loading the model."""
    def slow_load(name, device):
        time.sleep(30)

    monkeypatch.setattr(embedding_worker, "load_model", slow_load)
    received = queue.Queue()
    worker = ProcessEmbeddingWorker("fake-model", start_method="fork", poll_interval=0.05, shutdown_grace=0.2)
    worker.start(received.put)
    _collect_until(received, "progress")
    process = worker._process

    started = time.monotonic()
    worker.terminate()
    elapsed = time.monotonic() - started

    assert elapsed < 0.5
    assert worker.wait_terminated(5.0)
    assert not process.is_alive()
    assert all(message["status"] != "exited" for message in _drain(received))


@requires_fork
@pytest.mark.asyncio
async def test_killed_child_fails_pending_embeds(monkeypatch, make_bridge):
    """Test a child that dies mid-request fails in-flight embeds with WorkerInitError."""
    monkeypatch.setattr(embedding_worker, "load_model", lambda name, device: FakeModel(hang_on={"stuck"}))
    workers = []

    def factory():
        worker = ProcessEmbeddingWorker("fake-model", start_method="fork", poll_interval=0.05)
        workers.append(worker)
        return worker

    bridge = make_bridge(factory, timeout=10.0)

    assert await bridge.embed("hello") == [5.0, 1.0, 0.0]
    assert bridge.state.status == WorkerStatus.READY

    pending = asyncio.create_task(bridge.embed("stuck"))
    await asyncio.sleep(0.1)
    os.kill(workers[0].pid, signal.SIGKILL)

    with pytest.raises(WorkerInitError, match="exited unexpectedly"):
        await pending
    assert bridge.state.status == WorkerStatus.ERROR
    assert not bridge.is_running
    assert workers[0].wait_terminated(5.0)
