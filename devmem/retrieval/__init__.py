from devmem.retrieval.models import QueryOptions, SearchMode, SearchResult
from devmem.retrieval.planner import HybridQueryPlanner

__all__ = ["HybridQueryPlanner", "QueryOptions", "SearchMode", "SearchResult"]
