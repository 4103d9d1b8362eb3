import os
from dataclasses import dataclass


def _get_env(key: str, default: str | None = None) -> str | None:
    value = os.getenv(key, default)
    if value is None or value == "":
        return default
    return value


def _get_env_str(key: str, default: str) -> str:
    return _get_env(key, default) or default


def _get_env_int(key: str, default: int) -> int:
    raw = _get_env(key, str(default))
    return int(raw) if raw is not None else default


def _get_env_float(key: str, default: float) -> float:
    raw = _get_env(key, str(default))
    return float(raw) if raw is not None else default


def _get_env_optional_int(key: str) -> int | None:
    raw = _get_env(key)
    return int(raw) if raw is not None else None


@dataclass(frozen=True)
class StoreConfig:
    path: str = "devmemory.db"
    vector_path: str | None = None

    @classmethod
    def from_env(cls) -> "StoreConfig":
        return cls(
            path=_get_env_str("DEVMEM_DB_PATH", "devmemory.db"),
            vector_path=_get_env("DEVMEM_VECTOR_PATH", "devmemory.vectors.npz"),
        )


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str | None = None
    dimensions: int | None = None
    timeout_s: int = 30
    max_retries: int = 2
    device: str = "cpu"

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            provider=_get_env_str("DEVMEM_EMBED_PROVIDER", "openai"),
            model=_get_env_str("DEVMEM_EMBED_MODEL", "text-embedding-3-small"),
            api_key=_get_env("OPENAI_API_KEY"),
            base_url=_get_env("OPENAI_BASE_URL"),
            dimensions=_get_env_optional_int("DEVMEM_EMBED_DIMENSIONS"),
            timeout_s=_get_env_int("DEVMEM_EMBED_TIMEOUT_S", 30),
            max_retries=_get_env_int("DEVMEM_EMBED_MAX_RETRIES", 2),
            device=_get_env_str("DEVMEM_EMBED_DEVICE", "cpu"),
        )


@dataclass(frozen=True)
class VectorIndexConfig:
    kind: str = "flat"
    dimension: int | None = None
    max_neighbors: int = 16
    ef_construction: int = 64
    ef_search: int = 48
    exact_below: int = 256

    @classmethod
    def from_env(cls) -> "VectorIndexConfig":
        return cls(
            kind=_get_env_str("DEVMEM_VECTOR_INDEX", "flat"),
            dimension=_get_env_optional_int("DEVMEM_VECTOR_DIMENSION"),
            max_neighbors=_get_env_int("DEVMEM_NSW_MAX_NEIGHBORS", 16),
            ef_construction=_get_env_int("DEVMEM_NSW_EF_CONSTRUCTION", 64),
            ef_search=_get_env_int("DEVMEM_NSW_EF_SEARCH", 48),
            exact_below=_get_env_int("DEVMEM_NSW_EXACT_BELOW", 256),
        )


@dataclass(frozen=True)
class ExtractionConfig:
    proximity_scale: float = 1.0
    min_strength: float = 0.05
    max_strength: float = 1.0
    tag_distance: int = 8
    max_entities: int = 64
    observation_chars: int = 240

    @classmethod
    def from_env(cls) -> "ExtractionConfig":
        return cls(
            proximity_scale=_get_env_float("DEVMEM_PROXIMITY_SCALE", 1.0),
            min_strength=_get_env_float("DEVMEM_MIN_STRENGTH", 0.05),
            max_strength=_get_env_float("DEVMEM_MAX_STRENGTH", 1.0),
            tag_distance=_get_env_int("DEVMEM_TAG_DISTANCE", 8),
            max_entities=_get_env_int("DEVMEM_MAX_ENTITIES", 64),
            observation_chars=_get_env_int("DEVMEM_OBSERVATION_CHARS", 240),
        )


@dataclass(frozen=True)
class RetrievalConfig:
    weight_vector: float = 0.5
    weight_text: float = 0.3
    weight_graph: float = 0.2
    default_limit: int = 20
    candidate_k: int = 50
    vector_min_similarity: float = 0.0
    graph_hop_decay: float = 0.5
    auto_long_query_chars: int = 50
    parallel_channels: bool = True

    @classmethod
    def from_env(cls) -> "RetrievalConfig":
        return cls(
            weight_vector=_get_env_float("DEVMEM_WEIGHT_VECTOR", 0.5),
            weight_text=_get_env_float("DEVMEM_WEIGHT_TEXT", 0.3),
            weight_graph=_get_env_float("DEVMEM_WEIGHT_GRAPH", 0.2),
            default_limit=_get_env_int("DEVMEM_DEFAULT_LIMIT", 20),
            candidate_k=_get_env_int("DEVMEM_CANDIDATE_K", 50),
            vector_min_similarity=_get_env_float("DEVMEM_VECTOR_MIN_SIM", 0.0),
            graph_hop_decay=_get_env_float("DEVMEM_GRAPH_HOP_DECAY", 0.5),
            auto_long_query_chars=_get_env_int("DEVMEM_AUTO_LONG_QUERY_CHARS", 50),
            parallel_channels=_get_env_str("DEVMEM_PARALLEL_CHANNELS", "true").lower()
            in {"1", "true", "yes", "on"},
        )


@dataclass(frozen=True)
class IndexingConfig:
    workers: int = 1
    queue_size: int = 1024
    max_attempts: int = 4
    backoff_initial_s: float = 0.5
    backoff_max_s: float = 30.0

    @classmethod
    def from_env(cls) -> "IndexingConfig":
        return cls(
            workers=_get_env_int("DEVMEM_INDEX_WORKERS", 1),
            queue_size=_get_env_int("DEVMEM_INDEX_QUEUE_SIZE", 1024),
            max_attempts=_get_env_int("DEVMEM_INDEX_MAX_ATTEMPTS", 4),
            backoff_initial_s=_get_env_float("DEVMEM_INDEX_BACKOFF_S", 0.5),
            backoff_max_s=_get_env_float("DEVMEM_INDEX_BACKOFF_MAX_S", 30.0),
        )


@dataclass(frozen=True)
class DevMemConfig:
    store: StoreConfig
    embedding: EmbeddingConfig
    vector: VectorIndexConfig
    extraction: ExtractionConfig
    retrieval: RetrievalConfig
    indexing: IndexingConfig

    @classmethod
    def from_env(cls) -> "DevMemConfig":
        return cls(
            store=StoreConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
            vector=VectorIndexConfig.from_env(),
            extraction=ExtractionConfig.from_env(),
            retrieval=RetrievalConfig.from_env(),
            indexing=IndexingConfig.from_env(),
        )

    @classmethod
    def defaults(cls) -> "DevMemConfig":
        return cls(
            store=StoreConfig(),
            embedding=EmbeddingConfig(),
            vector=VectorIndexConfig(),
            extraction=ExtractionConfig(),
            retrieval=RetrievalConfig(),
            indexing=IndexingConfig(),
        )
