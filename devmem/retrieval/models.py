from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from devmem.errors import ValidationError
from devmem.memory.models import MemoryRecord, MemoryType, coerce_type, normalize_tags


class SearchMode(str, Enum):
    AUTO = "auto"
    VECTOR = "vector"
    TEXT = "text"
    GRAPH = "graph"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class QueryOptions:
    mode: SearchMode = SearchMode.AUTO
    limit: int | None = None
    offset: int = 0
    threshold: float | None = None
    vector: Sequence[float] | None = None
    type: MemoryType | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def build(cls, **options: Any) -> "QueryOptions":
        unknown = set(options) - {"mode", "limit", "offset", "threshold", "vector", "type", "tags"}
        if unknown:
            raise ValidationError(f"Unknown query options: {', '.join(sorted(unknown))}")

        mode = options.get("mode") or SearchMode.AUTO
        try:
            mode = SearchMode(getattr(mode, "value", mode))
        except ValueError as exc:
            raise ValidationError(f"Unknown search mode: {mode!r}") from exc

        limit = options.get("limit")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")

        offset = options.get("offset") or 0
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError(f"offset must be a non-negative integer, got {offset!r}")

        threshold = options.get("threshold")
        if threshold is not None:
            try:
                threshold = float(threshold)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"threshold must be a number, got {threshold!r}") from exc
            if not math.isfinite(threshold):
                raise ValidationError("threshold must be finite")

        memory_type = options.get("type")
        return cls(
            mode=mode,
            limit=limit,
            offset=offset,
            threshold=threshold,
            vector=options.get("vector"),
            type=coerce_type(memory_type) if memory_type is not None else None,
            tags=normalize_tags(options.get("tags")),
        )


@dataclass(frozen=True)
class SearchResult:
    record: MemoryRecord
    score: float
    method: str
    channel_scores: dict[str, float] = field(default_factory=dict)
    matched_entities: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "score": self.score,
            "method": self.method,
            "channel_scores": dict(self.channel_scores),
            "matched_entities": list(self.matched_entities),
        }
