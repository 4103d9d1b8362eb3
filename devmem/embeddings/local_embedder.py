from dataclasses import dataclass

from devmem.config import EmbeddingConfig


@dataclass
class LocalEmbedder:
    config: EmbeddingConfig

    def __post_init__(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ImportError(
                "sentence-transformers is required for local embeddings. "
                "Install it with: pip install 'devmem[local]'"
            ) from exc
        self._model = SentenceTransformer(self.config.model, device=self.config.device)

    def embed(self, text: str) -> list[float]:
        return self.embed_texts([text])[0]

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(texts, convert_to_numpy=True)
        return [vector.tolist() for vector in vectors]
