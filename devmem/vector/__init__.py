from devmem.config import VectorIndexConfig
from devmem.errors import ValidationError
from devmem.vector.index import FlatVectorIndex, VectorHit, VectorIndex
from devmem.vector.nsw import NSWVectorIndex


def build_vector_index(config: VectorIndexConfig) -> VectorIndex:
    kind = (config.kind or "flat").lower()
    if kind == "flat":
        return FlatVectorIndex(dimension=config.dimension)
    if kind == "nsw":
        return NSWVectorIndex(
            dimension=config.dimension,
            max_neighbors=config.max_neighbors,
            ef_construction=config.ef_construction,
            ef_search=config.ef_search,
            exact_below=config.exact_below,
        )
    raise ValidationError(f"Unknown vector index kind: {config.kind!r}")


__all__ = ["FlatVectorIndex", "NSWVectorIndex", "VectorHit", "VectorIndex", "build_vector_index"]
