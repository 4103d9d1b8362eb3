from devmem.config import DevMemConfig
from devmem.engine import DevMemEngine, HealthReport, RepairReport
from devmem.errors import (
    DevMemError,
    EmbeddingUnavailable,
    ExtractionFailure,
    IndexCorruption,
    NotFoundError,
    ValidationError,
)
from devmem.memory import MemoryRecord, MemoryType
from devmem.retrieval import SearchMode, SearchResult

__all__ = [
    "DevMemConfig",
    "DevMemEngine",
    "DevMemError",
    "EmbeddingUnavailable",
    "ExtractionFailure",
    "HealthReport",
    "IndexCorruption",
    "MemoryRecord",
    "MemoryType",
    "NotFoundError",
    "RepairReport",
    "SearchMode",
    "SearchResult",
    "ValidationError",
]
