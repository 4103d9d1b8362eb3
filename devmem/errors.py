class DevMemError(Exception):
    pass


class NotFoundError(DevMemError, LookupError):
    pass


class ValidationError(DevMemError, ValueError):
    pass


class EmbeddingUnavailable(DevMemError):
    """The embedder failed or timed out; the record stays without a vector."""


class ExtractionFailure(DevMemError):
    """Entity extraction raised; the record is kept and extraction is retried."""


class IndexCorruption(DevMemError):
    def __init__(self, message: str, orphan_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.orphan_ids = list(orphan_ids or [])
