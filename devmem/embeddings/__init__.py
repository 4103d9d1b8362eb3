from devmem.config import EmbeddingConfig
from devmem.embeddings.base import Embedder, as_embedder
from devmem.embeddings.openai_embedder import OpenAIEmbedder


def build_embedder(config: EmbeddingConfig):
    """Embedder for the configured provider, or None when none is usable."""
    provider = (config.provider or "").lower()
    if provider == "local":
        from devmem.embeddings.local_embedder import LocalEmbedder

        return LocalEmbedder(config)
    if provider == "openai" and config.api_key:
        return OpenAIEmbedder(config)
    return None


__all__ = ["Embedder", "OpenAIEmbedder", "as_embedder", "build_embedder"]
