from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from devmem.config import IndexingConfig
from devmem.errors import EmbeddingUnavailable, ExtractionFailure

logger = logging.getLogger(__name__)

RETRYABLE = (EmbeddingUnavailable, ExtractionFailure)


class TaskKind(str, Enum):
    EMBED = "embed"
    EXTRACT = "extract"


@dataclass(frozen=True)
class IndexTask:
    kind: TaskKind
    record_id: str


@dataclass(frozen=True)
class FailedTask:
    task: IndexTask
    error: str
    attempts: int


class IndexingQueue:
    """Bounded queue of deferred embedding and extraction work.

    With ``workers == 0`` tasks run inline in the submitting thread. A task
    already waiting in the queue is not queued twice; a task that keeps
    failing is parked in ``failed()`` until ``retry_failed()``.
    """

    def __init__(self, config: IndexingConfig, handler: Callable[[IndexTask], None]) -> None:
        self.config = config
        self._handler = handler
        self._queue: queue.Queue[IndexTask | None] = queue.Queue(maxsize=max(1, config.queue_size))
        self._cond = threading.Condition()
        self._queued: set[IndexTask] = set()
        self._running: Counter[IndexTask] = Counter()
        self._failed: dict[IndexTask, FailedTask] = {}
        self._threads: list[threading.Thread] = []
        self._stopped = False

    @property
    def inline(self) -> bool:
        return self.config.workers <= 0

    def start(self) -> None:
        if self.inline or self._threads:
            return
        self._stopped = False
        for number in range(self.config.workers):
            thread = threading.Thread(
                target=self._work, name=f"devmem-indexer-{number}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Indexing queue started with %d workers", self.config.workers)

    def stop(self, timeout: float | None = 5.0) -> None:
        if not self._threads:
            return
        self._stopped = True
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Indexing queue stopped")

    def submit(self, task: IndexTask) -> bool:
        with self._cond:
            self._failed.pop(task, None)
            if task in self._queued:
                return True
        # No workers drain the queue once stopped.
        if self.inline or self._stopped:
            with self._cond:
                self._running[task] += 1
            try:
                self._run(task)
            finally:
                self._finish(task)
            return True

        with self._cond:
            self._queued.add(task)
        try:
            self._queue.put_nowait(task)
        except queue.Full:
            with self._cond:
                self._queued.discard(task)
                self._failed[task] = FailedTask(task, "indexing queue is full", 0)
                self._cond.notify_all()
            logger.warning("Indexing queue full; parked %s for %s", task.kind.value, task.record_id)
            return False
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or running. False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._queued or self._running:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def pending(self) -> int:
        with self._cond:
            return len(self._queued) + sum(self._running.values())

    def failed(self) -> list[FailedTask]:
        with self._cond:
            return list(self._failed.values())

    def retry_failed(self) -> int:
        with self._cond:
            parked = list(self._failed)
            self._failed.clear()
        for task in parked:
            self.submit(task)
        return len(parked)

    def forget(self, record_id: str) -> None:
        with self._cond:
            for task in [task for task in self._failed if task.record_id == record_id]:
                del self._failed[task]

    def _work(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                self._queue.task_done()
                return
            with self._cond:
                self._queued.discard(task)
                self._running[task] += 1
            try:
                self._run(task)
            finally:
                self._finish(task)
                self._queue.task_done()

    def _finish(self, task: IndexTask) -> None:
        with self._cond:
            self._running[task] -= 1
            if self._running[task] <= 0:
                del self._running[task]
            self._cond.notify_all()

    def _run(self, task: IndexTask) -> None:
        attempts = 0
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(max(1, self.config.max_attempts)),
                wait=wait_exponential(
                    multiplier=self.config.backoff_initial_s, max=self.config.backoff_max_s
                ),
                retry=retry_if_exception_type(RETRYABLE),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._handler(task)
        except RETRYABLE as exc:
            self._park(task, exc, attempts)
        except Exception as exc:
            logger.exception("Indexing %s for %s raised", task.kind.value, task.record_id)
            self._park(task, exc, attempts)

    def _park(self, task: IndexTask, exc: Exception, attempts: int) -> None:
        with self._cond:
            self._failed[task] = FailedTask(task, str(exc), attempts)
        logger.warning(
            "Indexing %s for %s gave up after %d attempts: %s",
            task.kind.value,
            task.record_id,
            attempts,
            exc,
        )
