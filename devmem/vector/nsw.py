from __future__ import annotations

import heapq
import logging
from datetime import datetime
from itertools import islice
from typing import Iterator, Sequence

import numpy as np

from devmem.vector.index import VectorHit, VectorIndex, _stamp, rank_hits

logger = logging.getLogger(__name__)


class NSWVectorIndex(VectorIndex):
    """Navigable small-world graph over normalized vectors.

    Single layer, degree bounded by ``2 * max_neighbors``. Small indexes
    (fewer than ``exact_below`` vectors) are scanned exactly, and beam
    candidates are always scored exactly, so similarities match the flat
    index for every id that is returned.
    """

    kind = "nsw"

    def __init__(
        self,
        dimension: int | None = None,
        max_neighbors: int = 16,
        ef_construction: int = 64,
        ef_search: int = 48,
        exact_below: int = 256,
        entry_points: int = 4,
    ) -> None:
        super().__init__(dimension)
        self.max_neighbors = max(2, max_neighbors)
        self.ef_construction = max(self.max_neighbors, ef_construction)
        self.ef_search = max(1, ef_search)
        self.exact_below = max(0, exact_below)
        self.entry_points = max(1, entry_points)
        self._vectors: dict[str, np.ndarray] = {}
        self._stamps: dict[str, float] = {}
        self._links: dict[str, set[str]] = {}
        self._entry: str | None = None

    def upsert(
        self, record_id: str, vector: Sequence[float], updated_at: datetime | float | None = None
    ) -> None:
        vec = self._prepare(vector)
        stamp = _stamp(updated_at)
        with self._lock:
            if record_id in self._vectors:
                self._detach(record_id)
            self._insert(record_id, vec, stamp)
        logger.debug("Vector upserted for %s", record_id)

    def remove(self, record_id: str) -> bool:
        with self._lock:
            if record_id not in self._vectors:
                return False
            self._detach(record_id)
        logger.debug("Vector removed for %s", record_id)
        return True

    def query(self, vector: Sequence[float], k: int) -> list[VectorHit]:
        q = self._prepare(vector)
        if k <= 0:
            return []
        with self._lock:
            if not self._vectors:
                return []
            if len(self._vectors) <= self.exact_below:
                ids = list(self._vectors)
            else:
                found = self._search(q, max(self.ef_search, k))
                ids = [node for _, node in found]
            vecs = np.stack([self._vectors[node] for node in ids])
            stamps = np.array([self._stamps[node] for node in ids], dtype=np.float64)
        return rank_hits(ids, vecs @ q, stamps, k)

    def touch(self, record_id: str, updated_at: datetime | float) -> bool:
        with self._lock:
            if record_id not in self._stamps:
                return False
            self._stamps[record_id] = _stamp(updated_at)
            return True

    def contains(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._vectors

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._vectors)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._vectors)

    def items(self) -> Iterator[tuple[str, np.ndarray, float]]:
        with self._lock:
            snapshot = [
                (node, vec.copy(), self._stamps[node]) for node, vec in self._vectors.items()
            ]
        return iter(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._vectors = {}
            self._stamps = {}
            self._links = {}
            self._entry = None

    def degree(self, record_id: str) -> int:
        with self._lock:
            return len(self._links.get(record_id, ()))

    def _sim(self, q: np.ndarray, node: str) -> float:
        return float(self._vectors[node] @ q)

    def _seeds(self) -> list[str]:
        seeds = [self._entry] if self._entry is not None else []
        for node in islice(self._vectors, self.entry_points):
            if node not in seeds:
                seeds.append(node)
        return seeds

    def _search(self, q: np.ndarray, ef: int) -> list[tuple[float, str]]:
        visited: set[str] = set()
        candidates: list[tuple[float, str]] = []
        results: list[tuple[float, str]] = []
        for seed in self._seeds():
            visited.add(seed)
            sim = self._sim(q, seed)
            heapq.heappush(candidates, (-sim, seed))
            heapq.heappush(results, (sim, seed))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            neg_sim, node = heapq.heappop(candidates)
            if len(results) >= ef and -neg_sim < results[0][0]:
                break
            for neighbor in self._links[node]:
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                sim = self._sim(q, neighbor)
                if len(results) < ef or sim > results[0][0]:
                    heapq.heappush(candidates, (-sim, neighbor))
                    heapq.heappush(results, (sim, neighbor))
                    if len(results) > ef:
                        heapq.heappop(results)
        return sorted(results, reverse=True)

    def _insert(self, record_id: str, vec: np.ndarray, stamp: float) -> None:
        neighbors: list[str] = []
        if self._vectors:
            found = self._search(vec, self.ef_construction)
            neighbors = [node for _, node in found][: self.max_neighbors]
        self._vectors[record_id] = vec
        self._links[record_id] = set()
        self._stamps[record_id] = stamp
        for neighbor in neighbors:
            self._links[record_id].add(neighbor)
            self._links[neighbor].add(record_id)
            self._prune(neighbor)
        if self._entry is None:
            self._entry = record_id

    def _prune(self, node: str) -> None:
        links = self._links[node]
        limit = 2 * self.max_neighbors
        if len(links) <= limit:
            return
        base = self._vectors[node]
        ranked = sorted(links, key=lambda other: float(self._vectors[other] @ base), reverse=True)
        for dropped in ranked[limit:]:
            # Keep the dropped node reachable from at least one other vertex.
            if len(self._links[dropped]) <= 1:
                continue
            links.discard(dropped)
            self._links[dropped].discard(node)

    def _detach(self, record_id: str) -> None:
        former = self._links.pop(record_id, set())
        self._vectors.pop(record_id, None)
        self._stamps.pop(record_id, None)
        for neighbor in former:
            self._links[neighbor].discard(record_id)
        # Reconnect orphaned neighbourhoods among themselves.
        remaining = [node for node in former if node in self._vectors]
        for node in remaining:
            if len(self._links[node]) >= self.max_neighbors // 2:
                continue
            base = self._vectors[node]
            others = sorted(
                (other for other in remaining if other != node and other not in self._links[node]),
                key=lambda other: float(self._vectors[other] @ base),
                reverse=True,
            )
            for other in others[: self.max_neighbors // 2]:
                self._links[node].add(other)
                self._links[other].add(node)
        if self._entry == record_id:
            self._entry = next(iter(self._vectors), None)
