from dataclasses import dataclass
import logging

from openai import OpenAI

from devmem.config import EmbeddingConfig
from devmem.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)


@dataclass
class OpenAIEmbedder:
    config: EmbeddingConfig

    def __post_init__(self) -> None:
        self._client = self._build_client(self.config.base_url)
        self._fallback_client: OpenAI | None = None

    def _build_client(self, base_url: str | None) -> OpenAI:
        return OpenAI(
            api_key=self.config.api_key,
            base_url=base_url or None,
            timeout=self.config.timeout_s,
            max_retries=self.config.max_retries,
        )

    def _extract_embeddings(self, response) -> list[list[float]] | None:
        if isinstance(response, str):
            return None
        if isinstance(response, dict):
            data = response.get("data") or []
            return [item.get("embedding", []) for item in data if isinstance(item, dict)]
        data = getattr(response, "data", None)
        if data is None:
            return None
        return [list(item.embedding) for item in data]

    def _request(self, client: OpenAI, texts: list[str]):
        kwargs = {"model": self.config.model, "input": texts}
        if self.config.dimensions:
            kwargs["dimensions"] = self.config.dimensions
        return client.embeddings.create(**kwargs)

    def embed(self, text: str) -> list[float]:
        return self.embed_texts([text])[0]

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = None
        error: Exception | None = None
        try:
            response = self._request(self._client, texts)
        except Exception as exc:
            error = exc
            logger.warning("Embedding request failed; trying fallback client: %s", exc)
        embeddings = self._extract_embeddings(response) if response is not None else None
        if embeddings is None and self.config.base_url:
            if self._fallback_client is None:
                self._fallback_client = self._build_client(None)
            try:
                response = self._request(self._fallback_client, texts)
            except Exception as exc:
                error = exc
                logger.warning("Fallback embedding request failed: %s", exc)
                response = None
            embeddings = self._extract_embeddings(response) if response is not None else None
        if not embeddings or len(embeddings) != len(texts) or not all(embeddings):
            raise EmbeddingUnavailable(
                "Embedding response invalid. Check OPENAI_BASE_URL and OPENAI_API_KEY."
            ) from error
        return embeddings
