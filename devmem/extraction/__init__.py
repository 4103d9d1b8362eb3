from devmem.extraction.extractor import EntityExtractor
from devmem.extraction.models import ExtractedEntity, ExtractedRelationship, Extraction

__all__ = ["EntityExtractor", "ExtractedEntity", "ExtractedRelationship", "Extraction"]
