from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from devmem.config import EmbeddingConfig
from devmem.embeddings import OpenAIEmbedder, as_embedder, build_embedder
from devmem.errors import EmbeddingUnavailable


def _response(*vectors):
    return SimpleNamespace(data=[SimpleNamespace(embedding=list(vector)) for vector in vectors])


def test_openai_embedder_returns_vectors():
    with patch("devmem.embeddings.openai_embedder.OpenAI") as client_cls:
        client = client_cls.return_value
        client.embeddings.create.return_value = _response([0.1, 0.2, 0.3])

        embedder = OpenAIEmbedder(EmbeddingConfig(api_key="sk-test", dimensions=3))
        assert embedder.embed("hello") == [0.1, 0.2, 0.3]

        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["model"] == "text-embedding-3-small"
        assert kwargs["input"] == ["hello"]
        assert kwargs["dimensions"] == 3


def test_openai_embedder_failure_raises_embedding_unavailable():
    with patch("devmem.embeddings.openai_embedder.OpenAI") as client_cls:
        client_cls.return_value.embeddings.create.side_effect = RuntimeError("503")

        embedder = OpenAIEmbedder(EmbeddingConfig(api_key="sk-test"))
        with pytest.raises(EmbeddingUnavailable):
            embedder.embed("hello")


def test_openai_embedder_falls_back_to_default_endpoint():
    primary = MagicMock()
    primary.embeddings.create.side_effect = RuntimeError("proxy down")
    fallback = MagicMock()
    fallback.embeddings.create.return_value = _response([1.0, 0.0])

    with patch("devmem.embeddings.openai_embedder.OpenAI", side_effect=[primary, fallback]) as client_cls:
        embedder = OpenAIEmbedder(EmbeddingConfig(api_key="sk-test", base_url="http://proxy/v1"))
        assert embedder.embed_texts(["a"]) == [[1.0, 0.0]]

    assert client_cls.call_args_list[0].kwargs["base_url"] == "http://proxy/v1"
    assert client_cls.call_args_list[1].kwargs["base_url"] is None


def test_build_embedder_without_key_is_none():
    assert build_embedder(EmbeddingConfig(api_key=None)) is None


def test_as_embedder_wraps_host_failures():
    def broken(text):
        raise ConnectionError("offline")

    wrapped = as_embedder(broken)
    with pytest.raises(EmbeddingUnavailable):
        wrapped.embed("x")


def test_as_embedder_rejects_bad_vectors():
    with pytest.raises(EmbeddingUnavailable):
        as_embedder(lambda text: []).embed("x")
    with pytest.raises(EmbeddingUnavailable):
        as_embedder(lambda text: ["a", "b"]).embed("x")


def test_as_embedder_accepts_objects_and_rejects_junk():
    class Fixed:
        def embed(self, text):
            return (1, 2)

    assert as_embedder(Fixed()).embed("x") == [1.0, 2.0]
    assert as_embedder(None) is None
    with pytest.raises(TypeError):
        as_embedder(42)
