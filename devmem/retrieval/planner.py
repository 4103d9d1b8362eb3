from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from devmem.config import RetrievalConfig
from devmem.errors import EmbeddingUnavailable, IndexCorruption, NotFoundError, ValidationError
from devmem.graph.store import GraphStore
from devmem.memory.models import MemoryRecord
from devmem.memory.store import RecordStore
from devmem.retrieval.models import QueryOptions, SearchMode, SearchResult
from devmem.vector.index import VectorIndex

logger = logging.getLogger(__name__)

# A query mentions a known entity when its best name match scores at least this.
ENTITY_MENTION_SCORE = 0.7

CHANNELS = (SearchMode.VECTOR, SearchMode.TEXT, SearchMode.GRAPH)


@dataclass
class _ChannelHits:
    scores: dict[str, float] = field(default_factory=dict)
    entities: dict[str, list[str]] = field(default_factory=dict)


def _normalize(scores: dict[str, float]) -> dict[str, float]:
    top = max(scores.values(), default=0.0)
    if top <= 0:
        return {}
    return {record_id: score / top for record_id, score in scores.items() if score > 0}


@dataclass
class HybridQueryPlanner:
    records: RecordStore
    vectors: VectorIndex
    graph: GraphStore
    config: RetrievalConfig
    embedder: Any = None

    def __post_init__(self) -> None:
        self._pool = ThreadPoolExecutor(max_workers=len(CHANNELS), thread_name_prefix="devmem-query")

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def query(self, text: str, options: QueryOptions | None = None) -> list[SearchResult]:
        options = options or QueryOptions()
        if not isinstance(text, str):
            raise ValidationError("Query text must be a string")
        text = text.strip()
        if not text and options.vector is None:
            return []
        limit = options.limit or self.config.default_limit

        mode = self.plan(text, options)
        channels = CHANNELS if mode == SearchMode.HYBRID else (mode,)
        hits = self._run_channels(text, options, channels)

        candidates = set()
        for channel in channels:
            candidates.update(hits[channel].scores)
        records = self.records.get_many(candidates)
        missing = candidates - set(records)
        if missing:
            orphans = self._orphans(missing)
            if orphans:
                logger.error("Query hit %d records that no longer exist", len(orphans))
                raise IndexCorruption(
                    f"Index references {len(orphans)} missing records", orphan_ids=orphans
                )
            logger.debug("Dropping %d hits for records deleted during the query", len(missing))
            candidates -= missing
            for channel in channels:
                for record_id in missing:
                    hits[channel].scores.pop(record_id, None)

        normalized = {channel: _normalize(hits[channel].scores) for channel in channels}
        weights = self._weights(channels)
        total_weight = sum(weights.values())

        results: list[SearchResult] = []
        for record_id in candidates:
            record = records[record_id]
            if not self._passes_filters(record, options):
                continue
            raw = {
                channel.value: hits[channel].scores[record_id]
                for channel in channels
                if record_id in hits[channel].scores
            }
            if mode == SearchMode.HYBRID:
                score = sum(
                    weights[channel] * normalized[channel].get(record_id, 0.0) for channel in channels
                ) / total_weight
            elif mode == SearchMode.VECTOR:
                score = raw.get(SearchMode.VECTOR.value, 0.0)
            else:
                score = normalized[mode].get(record_id, 0.0)
            if options.threshold is not None and score < options.threshold:
                continue
            entity_names = hits[SearchMode.GRAPH].entities.get(record_id, []) if SearchMode.GRAPH in hits else []
            results.append(
                SearchResult(
                    record=record,
                    score=score,
                    method=mode.value,
                    channel_scores=raw,
                    matched_entities=tuple(entity_names),
                )
            )

        results.sort(key=lambda item: (-item.score, -item.record.updated_at.timestamp(), item.record.id))
        return results[options.offset : options.offset + limit]

    def plan(self, text: str, options: QueryOptions) -> SearchMode:
        mode = SearchMode(options.mode)
        if mode != SearchMode.AUTO:
            return mode
        if not text:
            return SearchMode.VECTOR
        if len(text) <= self.config.auto_long_query_chars:
            return SearchMode.HYBRID
        best = self.graph.search(text, limit=1)
        if best and best[0].score >= ENTITY_MENTION_SCORE:
            return SearchMode.HYBRID
        return SearchMode.VECTOR

    def _orphans(self, missing: set[str]) -> list[str]:
        """Missing records the vector or graph index still points at."""
        graph_records = self.graph.record_ids()
        return sorted(
            record_id
            for record_id in missing
            if self.vectors.contains(record_id) or record_id in graph_records
        )

    def _weights(self, channels) -> dict[SearchMode, float]:
        configured = {
            SearchMode.VECTOR: max(0.0, self.config.weight_vector),
            SearchMode.TEXT: max(0.0, self.config.weight_text),
            SearchMode.GRAPH: max(0.0, self.config.weight_graph),
        }
        weights = {channel: configured[channel] for channel in channels}
        if sum(weights.values()) <= 0:
            return {channel: 1.0 for channel in channels}
        return weights

    def _run_channels(
        self, text: str, options: QueryOptions, channels
    ) -> dict[SearchMode, _ChannelHits]:
        runners: dict[SearchMode, Callable[[], _ChannelHits]] = {
            SearchMode.VECTOR: lambda: self._vector_channel(text, options),
            SearchMode.TEXT: lambda: self._text_channel(text),
            SearchMode.GRAPH: lambda: self._graph_channel(text),
        }
        if len(channels) == 1 or not self.config.parallel_channels:
            return {channel: runners[channel]() for channel in channels}
        futures = {channel: self._pool.submit(runners[channel]) for channel in channels}
        return {channel: future.result() for channel, future in futures.items()}

    def _vector_channel(self, text: str, options: QueryOptions) -> _ChannelHits:
        if not self.vectors.queryable or self.vectors.size == 0:
            return _ChannelHits()
        vector = options.vector
        if vector is None:
            if self.embedder is None or not text:
                return _ChannelHits()
            try:
                vector = self.embedder.embed(text)
            except EmbeddingUnavailable as exc:
                logger.warning("Query embedding failed; vector channel skipped: %s", exc)
                return _ChannelHits()
        floor = self.config.vector_min_similarity
        hits = self.vectors.query(vector, self.config.candidate_k)
        return _ChannelHits(scores={record_id: sim for record_id, sim in hits if sim > floor})

    def _text_channel(self, text: str) -> _ChannelHits:
        if not text:
            return _ChannelHits()
        return _ChannelHits(scores=dict(self.records.lexical_search(text, self.config.candidate_k)))

    def _graph_channel(self, text: str) -> _ChannelHits:
        if not text:
            return _ChannelHits()
        seeds = self.graph.search(text, limit=self.config.candidate_k)
        relevance: dict[str, float] = {}
        names: dict[str, str] = {}
        for match in seeds:
            relevance[match.entity.id] = max(relevance.get(match.entity.id, 0.0), match.score)
            names[match.entity.id] = match.entity.name
        decay = self.config.graph_hop_decay
        for match in seeds:
            try:
                edges = self.graph.neighbors(match.entity.id)
            except NotFoundError:
                continue
            for edge in edges:
                other = edge.other(match.entity.id)
                score = match.score * edge.strength * decay
                if score > relevance.get(other, 0.0):
                    relevance[other] = score

        hits = _ChannelHits()
        for record_id, entity_ids in self.graph.records_for_entities(relevance).items():
            hits.scores[record_id] = sum(relevance[entity_id] for entity_id in entity_ids)
            ranked = sorted(entity_ids, key=lambda entity_id: -relevance[entity_id])
            hits.entities[record_id] = [self._entity_name(entity_id, names) for entity_id in ranked]
        return hits

    def _entity_name(self, entity_id: str, names: dict[str, str]) -> str:
        if entity_id not in names:
            entity = self.graph.get_entity(entity_id)
            names[entity_id] = entity.name if entity else entity_id
        return names[entity_id]

    def _passes_filters(self, record: MemoryRecord, options: QueryOptions) -> bool:
        if options.type is not None and record.type != options.type:
            return False
        if options.tags:
            wanted = {tag.lower() for tag in options.tags}
            if not wanted & {tag.lower() for tag in record.tags}:
                return False
        return True
