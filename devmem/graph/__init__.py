from devmem.graph.models import (
    Direction,
    Entity,
    EntityMatch,
    EntityType,
    GraphStatistics,
    Observation,
    Relationship,
    RelationType,
)
from devmem.graph.store import GraphStore

__all__ = [
    "Direction",
    "Entity",
    "EntityMatch",
    "EntityType",
    "GraphStatistics",
    "GraphStore",
    "Observation",
    "Relationship",
    "RelationType",
]
