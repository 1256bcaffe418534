"""Fire-and-forget job queue for side effects outside the sale transaction.

Inventory depletion, preparation tickets and receipt printing are submitted
here after the ledger has committed. A single daemon worker runs the jobs in
submission order; a failing job is logged and dropped, never retried and never
reported back to the terminal that caused it.
"""
from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from threading import Lock, Thread
from typing import Any, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(slots=True)
class OutboundJob:
    name: str
    fn: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class Outbox:
    __slots__ = ("_queue", "_worker", "_lock", "failures", "completed")

    def __init__(self) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._worker: Thread | None = None
        self._lock = Lock()
        self.failures = 0
        self.completed = 0

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = Thread(target=self._run, name="mesa-pos-outbox", daemon=True)
            self._worker.start()

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> None:
        self._ensure_worker()
        self._queue.put(OutboundJob(name, fn, args, kwargs))

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                job.fn(*job.args, **job.kwargs)
                self.completed += 1
            except Exception:
                self.failures += 1
                logger.exception("outbound job %s failed", job.name)
            finally:
                self._queue.task_done()

    def drain(self, timeout: float | None = 10.0) -> bool:
        """Block until every submitted job has run. Returns False on timeout."""
        if timeout is None:
            self._queue.join()
            return True
        done = Thread(target=self._queue.join, daemon=True)
        done.start()
        done.join(timeout)
        return not done.is_alive()

    def shutdown(self, timeout: float = 5.0) -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is None or not worker.is_alive():
            return
        self._queue.put(_STOP)
        worker.join(timeout)


outbox = Outbox()
