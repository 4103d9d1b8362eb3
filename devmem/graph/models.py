from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EntityType(str, Enum):
    PERSON = "person"
    PROJECT = "project"
    TECHNOLOGY = "technology"
    CONCEPT = "concept"
    ORGANIZATION = "organization"
    FILE = "file"
    REPOSITORY = "repository"
    API = "api"
    DATABASE = "database"
    SERVICE = "service"
    LOCATION = "location"
    DOCUMENT = "document"


class RelationType(str, Enum):
    WORKS_ON = "works_on"
    DEPENDS_ON = "depends_on"
    RELATED_TO = "related_to"
    CREATED_BY = "created_by"
    BELONGS_TO = "belongs_to"
    USES = "uses"


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    BOTH = "both"


@dataclass(frozen=True)
class Observation:
    text: str
    record_id: str | None = None


@dataclass
class Entity:
    id: str
    name: str
    type: str
    observations: list[Observation]
    properties: dict[str, Any]
    record_ids: set[str]
    pinned: bool
    created_at: datetime
    updated_at: datetime

    def snapshot(self) -> "Entity":
        return Entity(
            id=self.id,
            name=self.name,
            type=self.type,
            observations=list(self.observations),
            properties=dict(self.properties),
            record_ids=set(self.record_ids),
            pinned=self.pinned,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "observations": [item.text for item in self.observations],
            "properties": dict(self.properties),
            "record_ids": sorted(self.record_ids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Relationship:
    id: str
    from_id: str
    to_id: str
    type: str
    strength: float
    properties: dict[str, Any]
    support: dict[str | None, float]
    created_at: datetime
    updated_at: datetime

    @property
    def record_ids(self) -> set[str]:
        return {key for key in self.support if key is not None}

    def other(self, entity_id: str) -> str:
        return self.to_id if self.from_id == entity_id else self.from_id

    def snapshot(self) -> "Relationship":
        return Relationship(
            id=self.id,
            from_id=self.from_id,
            to_id=self.to_id,
            type=self.type,
            strength=self.strength,
            properties=dict(self.properties),
            support=dict(self.support),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "type": self.type,
            "strength": self.strength,
            "properties": dict(self.properties),
            "record_ids": sorted(self.record_ids),
        }


@dataclass(frozen=True)
class EntityMatch:
    entity: Entity
    score: float
    relationship_count: int


@dataclass(frozen=True)
class GraphStatistics:
    entity_count: int
    relationship_count: int
    entity_types: dict[str, int] = field(default_factory=dict)
    relationship_types: dict[str, int] = field(default_factory=dict)
    avg_relationships_per_entity: float = 0.0
