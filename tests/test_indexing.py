import threading

from devmem.config import IndexingConfig
from devmem.errors import EmbeddingUnavailable
from devmem.indexing import IndexingQueue, IndexTask, TaskKind


def _config(**overrides):
    values = dict(workers=0, queue_size=8, max_attempts=3, backoff_initial_s=0, backoff_max_s=0)
    values.update(overrides)
    return IndexingConfig(**values)


def test_inline_queue_runs_task_immediately():
    seen = []
    indexer = IndexingQueue(_config(), seen.append)
    task = IndexTask(TaskKind.EMBED, "r1")

    assert indexer.submit(task) is True
    assert seen == [task]
    assert indexer.pending() == 0


def test_retryable_failure_is_retried_then_parked():
    calls = []

    def handler(task):
        calls.append(task)
        raise EmbeddingUnavailable("timeout")

    indexer = IndexingQueue(_config(max_attempts=3), handler)
    indexer.submit(IndexTask(TaskKind.EMBED, "r1"))

    assert len(calls) == 3
    [failed] = indexer.failed()
    assert failed.task.record_id == "r1"
    assert failed.attempts == 3
    assert "timeout" in failed.error


def test_transient_failure_recovers_without_parking():
    calls = []

    def handler(task):
        calls.append(task)
        if len(calls) < 2:
            raise EmbeddingUnavailable("blip")

    indexer = IndexingQueue(_config(), handler)
    indexer.submit(IndexTask(TaskKind.EMBED, "r1"))

    assert len(calls) == 2
    assert indexer.failed() == []


def test_unexpected_error_is_parked_after_one_attempt():
    calls = []

    def handler(task):
        calls.append(task)
        raise KeyError("boom")

    indexer = IndexingQueue(_config(), handler)
    indexer.submit(IndexTask(TaskKind.EXTRACT, "r1"))

    assert len(calls) == 1
    assert indexer.failed()[0].attempts == 1


def test_retry_failed_resubmits_parked_tasks():
    state = {"down": True}
    done = []

    def handler(task):
        if state["down"]:
            raise EmbeddingUnavailable("down")
        done.append(task)

    indexer = IndexingQueue(_config(max_attempts=1), handler)
    indexer.submit(IndexTask(TaskKind.EMBED, "a"))
    indexer.submit(IndexTask(TaskKind.EMBED, "b"))
    assert len(indexer.failed()) == 2

    state["down"] = False
    assert indexer.retry_failed() == 2
    assert indexer.failed() == []
    assert {task.record_id for task in done} == {"a", "b"}


def test_forget_drops_parked_tasks_for_record():
    def handler(task):
        raise EmbeddingUnavailable("down")

    indexer = IndexingQueue(_config(max_attempts=1), handler)
    indexer.submit(IndexTask(TaskKind.EMBED, "a"))
    indexer.submit(IndexTask(TaskKind.EXTRACT, "a"))
    indexer.submit(IndexTask(TaskKind.EMBED, "b"))

    indexer.forget("a")

    assert [item.task.record_id for item in indexer.failed()] == ["b"]


def test_worker_threads_drain_queue():
    done = []
    lock = threading.Lock()

    def handler(task):
        with lock:
            done.append(task.record_id)

    indexer = IndexingQueue(_config(workers=2, queue_size=64), handler)
    indexer.start()
    try:
        for number in range(20):
            indexer.submit(IndexTask(TaskKind.EMBED, f"r{number}"))
        assert indexer.wait(timeout=5) is True
    finally:
        indexer.stop()

    assert sorted(done) == sorted(f"r{number}" for number in range(20))
    assert indexer.pending() == 0


def test_full_queue_parks_instead_of_blocking():
    indexer = IndexingQueue(_config(workers=1, queue_size=1), lambda task: None)

    assert indexer.submit(IndexTask(TaskKind.EMBED, "a")) is True
    assert indexer.submit(IndexTask(TaskKind.EMBED, "b")) is False

    [failed] = indexer.failed()
    assert failed.task.record_id == "b"
    assert failed.attempts == 0


def test_queued_duplicate_is_not_queued_twice():
    indexer = IndexingQueue(_config(workers=1, queue_size=4), lambda task: None)
    task = IndexTask(TaskKind.EMBED, "a")

    indexer.submit(task)
    indexer.submit(task)

    assert indexer.pending() == 1


def test_submit_after_stop_runs_inline():
    seen = []
    indexer = IndexingQueue(_config(workers=1, queue_size=4), seen.append)
    indexer.start()
    indexer.stop()
    task = IndexTask(TaskKind.EXTRACT, "late")

    assert indexer.submit(task) is True
    assert seen == [task]
    assert indexer.wait(timeout=1) is True
    assert indexer.pending() == 0
