import hashlib
import re
from dataclasses import replace

import pytest

from devmem.config import DevMemConfig, IndexingConfig, StoreConfig
from devmem.engine import DevMemEngine

DIM = 256


class HashEmbedder:
    """Bag-of-words vectors: texts sharing words get similar vectors."""

    def __init__(self):
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        vector = [0.0] * DIM
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            slot = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % DIM
            vector[slot] += 1.0
        return vector


class FailingEmbedder:
    def __init__(self):
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        raise RuntimeError("embedding service down")


def make_config(db_path=":memory:", vector_path=None, **sections):
    config = replace(
        DevMemConfig.defaults(),
        store=StoreConfig(path=db_path, vector_path=vector_path),
        indexing=IndexingConfig(workers=0, max_attempts=2, backoff_initial_s=0, backoff_max_s=0),
    )
    return replace(config, **sections) if sections else config


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def engine(config, embedder):
    engine = DevMemEngine(config, embedder)
    yield engine
    engine.close()
