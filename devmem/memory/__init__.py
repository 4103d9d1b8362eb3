from devmem.memory.models import MemoryPatch, MemoryRecord, MemoryType, RecordChanges, new_record
from devmem.memory.store import RecordStore

__all__ = ["MemoryPatch", "MemoryRecord", "MemoryType", "RecordChanges", "RecordStore", "new_record"]
