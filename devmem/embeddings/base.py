from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, Sequence, runtime_checkable

from devmem.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class Embedder(Protocol):
    def embed(self, text: str) -> Sequence[float]: ...


class _SafeEmbedder:
    """Wraps a host embedder so every failure surfaces as EmbeddingUnavailable."""

    def __init__(self, func: Callable[[str], Sequence[float]], name: str) -> None:
        self._func = func
        self.name = name

    def embed(self, text: str) -> list[float]:
        try:
            vector = self._func(text)
        except EmbeddingUnavailable:
            raise
        except Exception as exc:
            raise EmbeddingUnavailable(f"{self.name} failed: {exc}") from exc
        if vector is None:
            raise EmbeddingUnavailable(f"{self.name} returned no vector")
        try:
            values = [float(value) for value in vector]
        except (TypeError, ValueError) as exc:
            raise EmbeddingUnavailable(f"{self.name} returned a non-numeric vector") from exc
        if not values:
            raise EmbeddingUnavailable(f"{self.name} returned an empty vector")
        return values


def as_embedder(obj: Any) -> _SafeEmbedder | None:
    if obj is None:
        return None
    if isinstance(obj, _SafeEmbedder):
        return obj
    if isinstance(obj, Embedder):
        return _SafeEmbedder(obj.embed, type(obj).__name__)
    if callable(obj):
        return _SafeEmbedder(obj, getattr(obj, "__name__", type(obj).__name__))
    raise TypeError(f"Embedder must define embed(text) or be callable, got {type(obj).__name__}")
