import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from devmem.config import (
    DevMemConfig,
    EmbeddingConfig,
    ExtractionConfig,
    IndexingConfig,
    RetrievalConfig,
    StoreConfig,
    VectorIndexConfig,
)


def _load_yaml(path: str) -> dict[str, Any]:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def _overlay(base, updates: dict[str, Any] | None):
    if not updates:
        return base
    if not isinstance(updates, dict):
        raise ValueError(f"Config section for {type(base).__name__} must be a mapping")
    values = {}
    for item in fields(base):
        if item.name in updates:
            values[item.name] = _resolve_value(updates[item.name])
    return replace(base, **values) if values else base


def _resolve_value(value: Any) -> Any:
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            env_key = value[2:-1]
            return os.getenv(env_key, "")
        if value.startswith("$"):
            env_key = value[1:]
            return os.getenv(env_key, "")
    return value


def build_config(config_path: str | None = None) -> DevMemConfig:
    if not config_path:
        return DevMemConfig.from_env()

    raw = _load_yaml(config_path)
    return DevMemConfig(
        store=_overlay(StoreConfig(), raw.get("store")),
        embedding=_overlay(EmbeddingConfig(), raw.get("embedding")),
        vector=_overlay(VectorIndexConfig(), raw.get("vector")),
        extraction=_overlay(ExtractionConfig(), raw.get("extraction")),
        retrieval=_overlay(RetrievalConfig(), raw.get("retrieval")),
        indexing=_overlay(IndexingConfig(), raw.get("indexing")),
    )
