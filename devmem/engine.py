from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from devmem.config import DevMemConfig
from devmem.embeddings import as_embedder, build_embedder
from devmem.errors import (
    DevMemError,
    ExtractionFailure,
    IndexCorruption,
    ValidationError,
)
from devmem.extraction import EntityExtractor
from devmem.graph import Direction, Entity, EntityMatch, GraphStatistics, GraphStore, Relationship
from devmem.indexing import IndexingQueue, IndexTask, TaskKind
from devmem.memory import MemoryPatch, MemoryRecord, MemoryType, RecordStore, new_record
from devmem.retrieval import HybridQueryPlanner, QueryOptions, SearchResult
from devmem.settings import build_config
from devmem.utils import KeyedLocks, fingerprint
from devmem.vector import build_vector_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    record_count: int
    vector_count: int
    entity_count: int
    relationship_count: int
    index_queryable: bool
    pending_tasks: int
    failed_tasks: int

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class RepairReport:
    removed_vectors: int = 0
    removed_graph_records: int = 0
    queued_embeddings: int = 0
    queued_extractions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


def _content_key(record: MemoryRecord) -> str:
    return fingerprint(record.content)


def _graph_key(record: MemoryRecord) -> str:
    return fingerprint(record.content, *sorted(tag.lower() for tag in record.tags))


class DevMemEngine:
    """Owns the record, vector and graph stores and keeps them consistent.

    The record store is the source of truth. Graph extraction runs inline
    with each write; embeddings go through the indexing queue so a slow or
    failing embedder never fails a write.
    """

    def __init__(self, config: DevMemConfig | None = None, embedder: Any = None) -> None:
        self.config = config or DevMemConfig.defaults()
        self.embedder = as_embedder(embedder)
        self.records = RecordStore(self.config.store)
        self.vectors = build_vector_index(self.config.vector)
        self.graph = GraphStore()
        self.extractor = EntityExtractor(self.config.extraction)
        self.planner = HybridQueryPlanner(
            records=self.records,
            vectors=self.vectors,
            graph=self.graph,
            config=self.config.retrieval,
            embedder=self.embedder,
        )
        self.queue = IndexingQueue(self.config.indexing, self._handle_task)
        self._locks = KeyedLocks()
        self._embedded: dict[str, str] = {}
        self._extracted: dict[str, str] = {}
        self._closed = False

        if self.config.store.vector_path:
            self.vectors.load(self.config.store.vector_path)
        self.queue.start()
        if self.records.count():
            self.rebuild()
        logger.info(
            "DevMem engine ready: %d records, %d vectors, embedder=%s",
            self.records.count(),
            self.vectors.size,
            self.embedder.name if self.embedder else "none",
        )

    @classmethod
    def from_config(cls, config_path: str | None = None, embedder: Any = None) -> "DevMemEngine":
        config = build_config(config_path)
        if embedder is None:
            embedder = build_embedder(config.embedding)
        return cls(config, embedder)

    def __enter__(self) -> "DevMemEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.queue.stop()
        self.planner.close()
        if self.config.store.vector_path:
            self.vectors.save(self.config.store.vector_path)
        self.vectors.close()
        self.records.close()
        logger.info("DevMem engine closed")

    # -- records --------------------------------------------------------

    def create_memory(
        self,
        content: str,
        title: str = "",
        type: MemoryType | str = MemoryType.NOTE,
        tags: Iterable[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> MemoryRecord:
        record = new_record(content, title=title, type=type, tags=tags, metadata=metadata)
        with self._locks.hold(record.id):
            self.records.create(record)
            extracted = self._extract_inline(record)
        if not extracted:
            self.queue.submit(IndexTask(TaskKind.EXTRACT, record.id))
        self._request_embedding(record.id)
        logger.debug("Memory %s stored", record.id)
        return record

    def get_memory(self, memory_id: str) -> MemoryRecord | None:
        return self.records.get(memory_id)

    def update_memory(self, memory_id: str, **changes: Any) -> MemoryRecord | None:
        patch = MemoryPatch.from_kwargs(**changes)
        extracted = True
        with self._locks.hold(memory_id):
            result = self.records.update(memory_id, patch)
            if result is None:
                return None
            record, record_changes = result
            if record_changes.content_changed:
                # The old vector describes content that no longer exists.
                self.vectors.remove(memory_id)
                self._embedded.pop(memory_id, None)
            else:
                self.vectors.touch(memory_id, record.updated_at)
            if record_changes.reindex_graph:
                extracted = self._extract_inline(record)
        if not extracted:
            self.queue.submit(IndexTask(TaskKind.EXTRACT, memory_id))
        if record_changes.content_changed:
            self._request_embedding(memory_id)
        return record

    def delete_memory(self, memory_id: str) -> bool:
        with self._locks.hold(memory_id):
            # Indexes are cleared before the row goes.
            self.vectors.remove(memory_id)
            self.graph.remove_record(memory_id)
            deleted = self.records.delete(memory_id)
            self._embedded.pop(memory_id, None)
            self._extracted.pop(memory_id, None)
        self.queue.forget(memory_id)
        return deleted

    def list_recent(self, limit: int = 20, offset: int = 0) -> list[MemoryRecord]:
        return self.records.list_recent(limit, offset)

    def find_by_tags(self, tags: Iterable[str], limit: int = 50, offset: int = 0) -> list[MemoryRecord]:
        if isinstance(tags, str):
            tags = [tags]
        return self.records.find_by_tags(tags, limit, offset)

    def find_by_type(self, memory_type: MemoryType | str, limit: int = 50, offset: int = 0) -> list[MemoryRecord]:
        return self.records.find_by_type(memory_type, limit, offset)

    def count(self) -> int:
        return self.records.count()

    def all_tags(self) -> list[str]:
        return self.records.all_tags()

    # -- retrieval ------------------------------------------------------

    def query(self, text: str, **options: Any) -> list[SearchResult]:
        query_options = QueryOptions.build(**options)
        try:
            return self.planner.query(text, query_options)
        except IndexCorruption as exc:
            logger.error("Index corruption during query (%d orphans); repairing", len(exc.orphan_ids))
            self.repair()
            raise

    # -- graph ----------------------------------------------------------

    def search_entities(self, text: str, limit: int = 20, entity_type: Any = None) -> list[EntityMatch]:
        return self.graph.search(text, limit=limit, entity_type=entity_type)

    def memory_entities(self, memory_id: str) -> list[Entity]:
        return sorted(self.graph.entities_for_record(memory_id), key=lambda entity: entity.name)

    def get_entity(self, entity_id: str) -> Entity | None:
        return self.graph.get_entity(entity_id)

    def get_relationships(
        self, entity_id: str, direction: Direction | str = Direction.BOTH
    ) -> list[Relationship]:
        return self.graph.neighbors(entity_id, direction)

    def entities_by_type(self, entity_type: Any, limit: int = 50) -> list[Entity]:
        return self.graph.by_type(entity_type, limit)

    def find_path(self, from_id: str, to_id: str, max_depth: int = 3) -> list[Relationship]:
        return self.graph.path(from_id, to_id, max_depth)

    def all_entities(self) -> list[Entity]:
        return self.graph.all_entities()

    def all_relationships(self) -> list[Relationship]:
        return self.graph.all_relationships()

    def graph_statistics(self) -> GraphStatistics:
        return self.graph.statistics()

    def create_entity(
        self,
        name: str,
        type: Any,
        observations: Iterable[str] | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> Entity:
        entity_id = self.graph.upsert_entity(name, type, properties=dict(properties or {}))
        for observation in observations or ():
            self.graph.upsert_entity(name, type, observation)
        return self.graph.get_entity(entity_id)

    def create_relationship(
        self,
        source: str,
        target: str,
        type: Any = "related_to",
        strength: float = 0.5,
        properties: Mapping[str, Any] | None = None,
    ) -> Relationship:
        relationship_id = self.graph.upsert_relationship(
            self._resolve_entity(source),
            self._resolve_entity(target),
            type,
            strength,
            properties=dict(properties or {}),
        )
        return self.graph.get_relationship(relationship_id)

    def delete_entity(self, entity_id: str) -> bool:
        return self.graph.delete_entity(entity_id)

    def _resolve_entity(self, reference: str) -> str:
        if self.graph.get_entity(reference) is not None:
            return reference
        entity = self.graph.find_entity(reference)
        if entity is None:
            raise ValidationError(f"Relationship references unknown entity {reference!r}")
        return entity.id

    # -- maintenance ----------------------------------------------------

    def health(self) -> HealthReport:
        return HealthReport(
            record_count=self.records.count(),
            vector_count=self.vectors.size,
            entity_count=self.graph.entity_count,
            relationship_count=self.graph.relationship_count,
            index_queryable=self.vectors.queryable,
            pending_tasks=self.queue.pending(),
            failed_tasks=len(self.queue.failed()),
        )

    def repair(self) -> RepairReport:
        """Drop index entries for deleted records and requeue missing work."""
        live = self.records.ids()
        removed_vectors = 0
        for record_id in [item for item in self.vectors.ids() if item not in live]:
            with self._locks.hold(record_id):
                if self.records.get(record_id) is None and self.vectors.remove(record_id):
                    self._embedded.pop(record_id, None)
                    removed_vectors += 1
        removed_graph = 0
        for record_id in self.graph.record_ids() - live:
            with self._locks.hold(record_id):
                if self.records.get(record_id) is None:
                    self.graph.remove_record(record_id)
                    self._extracted.pop(record_id, None)
                    removed_graph += 1

        queued_extractions = 0
        for record_id in sorted(live - set(self._extracted)):
            self.queue.submit(IndexTask(TaskKind.EXTRACT, record_id))
            queued_extractions += 1
        queued_embeddings = 0
        if self.embedder is not None:
            for record_id in sorted(live - set(self.vectors.ids())):
                self.queue.submit(IndexTask(TaskKind.EMBED, record_id))
                queued_embeddings += 1

        report = RepairReport(removed_vectors, removed_graph, queued_embeddings, queued_extractions)
        logger.info("Repair finished: %s", report)
        return report

    def rebuild(self) -> RepairReport:
        """Re-derive the graph from every stored record, then repair."""
        rebuilt = 0
        for record in self.records.iter_all():
            with self._locks.hold(record.id):
                if self._extract_inline(record):
                    rebuilt += 1
        logger.info("Graph rebuilt from %d records", rebuilt)
        return self.repair()

    def wait_for_indexing(self, timeout: float | None = None) -> bool:
        return self.queue.wait(timeout)

    def retry_failed_indexing(self) -> int:
        return self.queue.retry_failed()

    # -- indexing -------------------------------------------------------

    def _request_embedding(self, record_id: str) -> None:
        if self.embedder is None:
            return
        self.queue.submit(IndexTask(TaskKind.EMBED, record_id))

    def _extract_inline(self, record: MemoryRecord) -> bool:
        """Apply extraction for ``record``; caller holds the record lock."""
        try:
            self._apply_extraction(record)
        except ExtractionFailure as exc:
            logger.warning("Extraction for %s failed, queued for retry: %s", record.id, exc)
            return False
        return True

    def _apply_extraction(self, record: MemoryRecord) -> None:
        key = _graph_key(record)
        if self._extracted.get(record.id) == key:
            return
        try:
            extraction = self.extractor.extract(record.content, record.tags)
            self.graph.apply_extraction(record.id, extraction)
        except DevMemError as exc:
            raise ExtractionFailure(str(exc)) from exc
        except Exception as exc:
            raise ExtractionFailure(f"{type(exc).__name__}: {exc}") from exc
        self._extracted[record.id] = key

    def _handle_task(self, task: IndexTask) -> None:
        if task.kind == TaskKind.EXTRACT:
            self._extract_task(task.record_id)
        elif task.kind == TaskKind.EMBED:
            self._embed_task(task.record_id)
        else:
            raise ValidationError(f"Unknown indexing task: {task.kind!r}")

    def _extract_task(self, record_id: str) -> None:
        with self._locks.hold(record_id):
            record = self.records.get(record_id)
            if record is None:
                self.graph.remove_record(record_id)
                return
            self._apply_extraction(record)

    def _embed_task(self, record_id: str) -> None:
        record = self.records.get(record_id)
        if record is None or self.embedder is None:
            return
        key = _content_key(record)
        if self._embedded.get(record_id) == key and self.vectors.contains(record_id):
            return
        vector = self.embedder.embed(record.content)
        with self._locks.hold(record_id):
            current = self.records.get(record_id)
            if current is None or _content_key(current) != key:
                # Deleted or rewritten while embedding; a newer task owns it.
                return
            self.vectors.upsert(record_id, vector, current.updated_at)
            self._embedded[record_id] = key
