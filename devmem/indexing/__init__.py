from devmem.indexing.queue import FailedTask, IndexingQueue, IndexTask, TaskKind

__all__ = ["FailedTask", "IndexTask", "IndexingQueue", "TaskKind"]
