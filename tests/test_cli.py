import json

import pytest

from devmem.cli import main


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("DEVMEM_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("DEVMEM_VECTOR_PATH", str(tmp_path / "cli.npz"))
    monkeypatch.setenv("DEVMEM_INDEX_WORKERS", "0")
    return tmp_path


def _run(capsys, *argv):
    main(["--log-level", "ERROR", *argv])
    return capsys.readouterr().out


def test_add_get_search_delete(cli_env, capsys):
    out = _run(capsys, "add", "Use Redis for session cache", "--tag", "infra", "--meta", "ticket=42")
    memory_id = out.strip().splitlines()[-1]

    record = json.loads(_run(capsys, "get", memory_id))
    assert record["content"] == "Use Redis for session cache"
    assert record["tags"] == ["infra"]
    assert record["metadata"] == {"ticket": 42}
    assert "Redis" in record["entities"]

    out = _run(capsys, "search", "redis", "--mode", "text")
    assert memory_id in out

    out = _run(capsys, "entities", "Redis")
    assert "Redis" in out

    health = json.loads(_run(capsys, "health"))
    assert health["record_count"] == 1
    assert health["vector_count"] == 0

    assert f"Deleted {memory_id}" in _run(capsys, "delete", memory_id)


def test_missing_memory_exits_with_one(cli_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--log-level", "ERROR", "get", "does-not-exist"])
    assert excinfo.value.code == 1
    assert "not found" in capsys.readouterr().out


def test_invalid_metadata_is_rejected(cli_env):
    with pytest.raises(SystemExit):
        main(["--log-level", "ERROR", "add", "note", "--meta", "no-equals-sign"])
