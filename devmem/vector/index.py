from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Sequence

import numpy as np

from devmem.errors import ValidationError

logger = logging.getLogger(__name__)

VectorHit = tuple[str, float]


def _stamp(updated_at: datetime | float | None) -> float:
    if updated_at is None:
        return time.time()
    if isinstance(updated_at, datetime):
        return updated_at.timestamp()
    return float(updated_at)


def rank_hits(
    ids: Sequence[str], sims: np.ndarray, stamps: np.ndarray, k: int
) -> list[VectorHit]:
    """Top-k by similarity, newest stamp first among equal similarities."""
    n = len(ids)
    if n == 0 or k <= 0:
        return []
    sims = np.clip(sims, -1.0, 1.0)
    if k < n:
        kth = np.partition(sims, n - k)[n - k]
        candidates = np.nonzero(sims >= kth)[0]
    else:
        candidates = np.arange(n)
    order = candidates[np.lexsort((-stamps[candidates], -sims[candidates]))][:k]
    return [(ids[i], float(sims[i])) for i in order]


class VectorIndex(ABC):
    """Cosine-similarity index over record ids.

    Vectors are normalized on the way in, so a query is a dot product.
    Zero vectors stay zero and score 0 against everything.
    """

    kind = "base"

    def __init__(self, dimension: int | None = None) -> None:
        self._lock = threading.RLock()
        self._dimension = dimension
        self._closed = False

    @property
    def dimension(self) -> int | None:
        return self._dimension

    @property
    def queryable(self) -> bool:
        return not self._closed

    def close(self) -> None:
        self._closed = True

    def _prepare(self, vector: Any) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.size == 0:
            raise ValidationError("Vector must be a non-empty one-dimensional sequence of numbers")
        if not np.all(np.isfinite(arr)):
            raise ValidationError("Vector contains NaN or infinite values")
        with self._lock:
            if self._dimension is None:
                self._dimension = int(arr.size)
            elif arr.size != self._dimension:
                raise ValidationError(
                    f"Vector dimension mismatch: {arr.size} != {self._dimension}"
                )
        norm = float(np.linalg.norm(arr))
        if norm == 0.0:
            return np.zeros_like(arr)
        return arr / norm

    @abstractmethod
    def upsert(
        self, record_id: str, vector: Sequence[float], updated_at: datetime | float | None = None
    ) -> None: ...

    @abstractmethod
    def remove(self, record_id: str) -> bool: ...

    @abstractmethod
    def query(self, vector: Sequence[float], k: int) -> list[VectorHit]: ...

    @abstractmethod
    def touch(self, record_id: str, updated_at: datetime | float) -> bool: ...

    @abstractmethod
    def contains(self, record_id: str) -> bool: ...

    @abstractmethod
    def ids(self) -> list[str]: ...

    @property
    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def items(self) -> Iterator[tuple[str, np.ndarray, float]]: ...

    @abstractmethod
    def clear(self) -> None: ...

    def save(self, path: str | Path) -> None:
        path = Path(path)
        with self._lock:
            snapshot = list(self.items())
            dimension = self._dimension or 0
        ids = np.array([item[0] for item in snapshot], dtype=str)
        if snapshot:
            vecs = np.stack([item[1] for item in snapshot]).astype(np.float32)
        else:
            vecs = np.zeros((0, dimension), dtype=np.float32)
        stamps = np.array([item[2] for item in snapshot], dtype=np.float64)

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                np.savez(handle, ids=ids, vecs=vecs, stamps=stamps)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info("Saved %d vectors to %s", len(snapshot), path)

    def load(self, path: str | Path) -> int:
        path = Path(path)
        if not path.exists():
            return 0
        with np.load(path, allow_pickle=False) as data:
            ids = [str(item) for item in data["ids"].tolist()]
            vecs = data["vecs"].astype(np.float32)
            stamps = data["stamps"].astype(np.float64)
        with self._lock:
            self.clear()
            for record_id, vec, stamp in zip(ids, vecs, stamps):
                self.upsert(record_id, vec, float(stamp))
        logger.info("Loaded %d vectors from %s", len(ids), path)
        return len(ids)


class FlatVectorIndex(VectorIndex):
    """Exact linear scan over a contiguous numpy matrix."""

    kind = "flat"

    def __init__(self, dimension: int | None = None) -> None:
        super().__init__(dimension)
        self._vecs = np.zeros((0, dimension or 0), dtype=np.float32)
        self._stamps = np.zeros(0, dtype=np.float64)
        self._ids: list[str] = []
        self._rows: dict[str, int] = {}

    def _ensure_capacity(self, needed: int) -> None:
        capacity = self._vecs.shape[0]
        if needed <= capacity and self._vecs.shape[1] == self._dimension:
            return
        new_capacity = max(needed, capacity * 2, 16)
        vecs = np.zeros((new_capacity, self._dimension or 0), dtype=np.float32)
        stamps = np.zeros(new_capacity, dtype=np.float64)
        count = len(self._ids)
        if count and self._vecs.shape[1] == self._dimension:
            vecs[:count] = self._vecs[:count]
        stamps[:count] = self._stamps[:count]
        self._vecs = vecs
        self._stamps = stamps

    def upsert(
        self, record_id: str, vector: Sequence[float], updated_at: datetime | float | None = None
    ) -> None:
        vec = self._prepare(vector)
        stamp = _stamp(updated_at)
        with self._lock:
            row = self._rows.get(record_id)
            if row is None:
                row = len(self._ids)
                self._ensure_capacity(row + 1)
                self._ids.append(record_id)
                self._rows[record_id] = row
            self._vecs[row] = vec
            self._stamps[row] = stamp
        logger.debug("Vector upserted for %s", record_id)

    def remove(self, record_id: str) -> bool:
        with self._lock:
            row = self._rows.pop(record_id, None)
            if row is None:
                return False
            last = len(self._ids) - 1
            if row != last:
                moved = self._ids[last]
                self._vecs[row] = self._vecs[last]
                self._stamps[row] = self._stamps[last]
                self._ids[row] = moved
                self._rows[moved] = row
            self._ids.pop()
        logger.debug("Vector removed for %s", record_id)
        return True

    def query(self, vector: Sequence[float], k: int) -> list[VectorHit]:
        q = self._prepare(vector)
        with self._lock:
            count = len(self._ids)
            if count == 0:
                return []
            vecs = self._vecs[:count].copy()
            stamps = self._stamps[:count].copy()
            ids = list(self._ids)
        return rank_hits(ids, vecs @ q, stamps, k)

    def touch(self, record_id: str, updated_at: datetime | float) -> bool:
        with self._lock:
            row = self._rows.get(record_id)
            if row is None:
                return False
            self._stamps[row] = _stamp(updated_at)
            return True

    def contains(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._rows

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._ids)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._ids)

    def items(self) -> Iterator[tuple[str, np.ndarray, float]]:
        with self._lock:
            snapshot = [
                (record_id, self._vecs[row].copy(), float(self._stamps[row]))
                for row, record_id in enumerate(self._ids)
            ]
        return iter(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._vecs = np.zeros((0, self._dimension or 0), dtype=np.float32)
            self._stamps = np.zeros(0, dtype=np.float64)
            self._ids = []
            self._rows = {}
