import pytest

from devmem.config import DevMemConfig
from devmem.settings import build_config


def test_yaml_overlay_resolves_env_references(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    monkeypatch.setenv("TEST_BASE_URL", "http://localhost:8080/v1")
    path = tmp_path / "config.yaml"
    path.write_text(
        "store:\n"
        "  path: /tmp/mem.db\n"
        "embedding:\n"
        "  api_key: ${TEST_OPENAI_KEY}\n"
        "  base_url: $TEST_BASE_URL\n"
        "retrieval:\n"
        "  weight_graph: 0.4\n"
        "indexing:\n"
        "  workers: 0\n",
        encoding="utf-8",
    )

    config = build_config(str(path))

    assert config.store.path == "/tmp/mem.db"
    assert config.store.vector_path is None
    assert config.embedding.api_key == "sk-test"
    assert config.embedding.base_url == "http://localhost:8080/v1"
    assert config.retrieval.weight_graph == 0.4
    assert config.retrieval.weight_vector == 0.5
    assert config.indexing.workers == 0


def test_yaml_must_be_a_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        build_config(str(path))


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")

    assert build_config(str(path)) == DevMemConfig.defaults()


def test_from_env(monkeypatch):
    monkeypatch.setenv("DEVMEM_DB_PATH", "/data/devmem.db")
    monkeypatch.setenv("DEVMEM_VECTOR_INDEX", "nsw")
    monkeypatch.setenv("DEVMEM_WEIGHT_TEXT", "0.25")
    monkeypatch.setenv("DEVMEM_INDEX_WORKERS", "3")
    monkeypatch.setenv("DEVMEM_PARALLEL_CHANNELS", "false")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    config = build_config()

    assert config.store.path == "/data/devmem.db"
    assert config.vector.kind == "nsw"
    assert config.retrieval.weight_text == 0.25
    assert config.retrieval.parallel_channels is False
    assert config.indexing.workers == 3
    assert config.embedding.api_key is None
