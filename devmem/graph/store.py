from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from difflib import SequenceMatcher
from typing import TYPE_CHECKING, Any, Iterable
from uuid import uuid4

from devmem.errors import NotFoundError, ValidationError
from devmem.graph.models import (
    Direction,
    Entity,
    EntityMatch,
    GraphStatistics,
    Observation,
    Relationship,
)
from devmem.utils import normalize_name, terms, utc_now

if TYPE_CHECKING:
    from devmem.extraction.models import Extraction

logger = logging.getLogger(__name__)


def _words(text: str) -> str:
    return " ".join(terms(normalize_name(text)))


def match_score(query: str, name: str) -> float:
    q = _words(query)
    n = _words(name)
    if not q or not n:
        return 0.0
    if n == q:
        return 1.0
    if len(q) >= 2 and n.startswith(q):
        return 0.9
    if f" {q} " in f" {n} ":
        return 0.8
    if f" {n} " in f" {q} ":
        return 0.7
    if len(q) >= 3 and q in n:
        return 0.6
    longest = max(len(q), len(n))
    if abs(len(q) - len(n)) > longest / 2:
        return 0.0
    ratio = SequenceMatcher(None, q, n).ratio()
    return 0.5 * ratio if ratio >= 0.75 else 0.0


def _entity_type(value: Any) -> str:
    text = str(getattr(value, "value", value) or "").strip().lower()
    if not text:
        raise ValidationError("Entity type cannot be empty")
    return text


def _relation_type(value: Any) -> str:
    text = str(getattr(value, "value", value) or "").strip().lower().replace("-", "_")
    if not text:
        raise ValidationError("Relationship type cannot be empty")
    return text


class GraphStore:
    """Entity/relationship arena keyed by id.

    Entities are deduplicated on (normalized name, type). Every observation
    and relationship contribution remembers the record that produced it, so
    removing a record can garbage-collect whatever only that record
    supported. Entities and relationships created directly by the host are
    pinned and survive record deletion.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entities: dict[str, Entity] = {}
        self._relationships: dict[str, Relationship] = {}
        self._entity_keys: dict[tuple[str, str], str] = {}
        self._relationship_keys: dict[tuple[str, str, str], str] = {}
        self._out: dict[str, set[str]] = defaultdict(set)
        self._in: dict[str, set[str]] = defaultdict(set)
        self._record_entities: dict[str, set[str]] = defaultdict(set)
        self._record_relationships: dict[str, set[str]] = defaultdict(set)

    # -- writes ---------------------------------------------------------

    def upsert_entity(
        self,
        name: str,
        type: Any,
        observation: str | None = None,
        record_id: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Entity name cannot be empty")
        entity_type = _entity_type(type)
        key = (normalize_name(name), entity_type)
        now = utc_now()
        with self._lock:
            entity_id = self._entity_keys.get(key)
            if entity_id is None:
                entity_id = str(uuid4())
                self._entities[entity_id] = Entity(
                    id=entity_id,
                    name=name.strip(),
                    type=entity_type,
                    observations=[],
                    properties={},
                    record_ids=set(),
                    pinned=record_id is None,
                    created_at=now,
                    updated_at=now,
                )
                self._entity_keys[key] = entity_id
                logger.debug("Entity %s created: %s (%s)", entity_id, name, entity_type)
            entity = self._entities[entity_id]
            if record_id is None:
                entity.pinned = True
            else:
                entity.record_ids.add(record_id)
                self._record_entities[record_id].add(entity_id)
            if observation:
                entity.observations.append(Observation(observation, record_id))
            if properties:
                entity.properties.update(properties)
            entity.updated_at = now
        return entity_id

    def upsert_relationship(
        self,
        from_id: str,
        to_id: str,
        type: Any,
        strength_delta: float = 0.5,
        record_id: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> str:
        relation_type = _relation_type(type)
        if not 0.0 <= float(strength_delta) <= 1.0:
            raise ValidationError(f"Relationship strength must be within [0, 1], got {strength_delta}")
        if from_id == to_id:
            raise ValidationError("Relationship endpoints must differ")
        now = utc_now()
        with self._lock:
            for endpoint in (from_id, to_id):
                if endpoint not in self._entities:
                    raise ValidationError(f"Relationship references unknown entity {endpoint}")
            key = (from_id, to_id, relation_type)
            relationship_id = self._relationship_keys.get(key)
            if relationship_id is None:
                relationship_id = str(uuid4())
                self._relationships[relationship_id] = Relationship(
                    id=relationship_id,
                    from_id=from_id,
                    to_id=to_id,
                    type=relation_type,
                    strength=0.0,
                    properties={},
                    support={},
                    created_at=now,
                    updated_at=now,
                )
                self._relationship_keys[key] = relationship_id
                self._out[from_id].add(relationship_id)
                self._in[to_id].add(relationship_id)
            relationship = self._relationships[relationship_id]
            relationship.support[record_id] = min(
                1.0, relationship.support.get(record_id, 0.0) + float(strength_delta)
            )
            relationship.strength = min(1.0, sum(relationship.support.values()))
            if record_id is not None:
                self._record_relationships[record_id].add(relationship_id)
            if properties:
                relationship.properties.update(properties)
            relationship.updated_at = now
        return relationship_id

    def apply_extraction(self, record_id: str, extraction: Extraction) -> list[str]:
        """Replace everything ``record_id`` contributed with ``extraction``."""
        keys = {item.key for item in extraction.entities}
        for item in extraction.entities:
            if not item.name.strip():
                raise ValidationError("Extracted entity name cannot be empty")
        for rel in extraction.relationships:
            if rel.source not in keys or rel.target not in keys:
                raise ValidationError("Extracted relationship references an entity not in the extraction")
            if not 0.0 <= rel.strength <= 1.0:
                raise ValidationError(f"Extracted relationship strength {rel.strength} outside [0, 1]")

        with self._lock:
            stale_entities, stale_relationships = self._strip_record(record_id)
            ids: dict[tuple[str, str], str] = {}
            for item in extraction.entities:
                ids[item.key] = self.upsert_entity(
                    item.name, item.type, item.observation, record_id=record_id
                )
            for rel in extraction.relationships:
                source, target = ids[rel.source], ids[rel.target]
                if source == target:
                    continue
                self.upsert_relationship(source, target, rel.type, rel.strength, record_id=record_id)
            self._collect(stale_entities, stale_relationships)
        logger.debug(
            "Record %s contributes %d entities and %d relationships",
            record_id,
            len(extraction.entities),
            len(extraction.relationships),
        )
        return list(dict.fromkeys(ids.values()))

    def remove_record(self, record_id: str) -> tuple[list[str], list[str]]:
        with self._lock:
            entities, relationships = self._strip_record(record_id)
            removed = self._collect(entities, relationships)
        if removed[0] or removed[1]:
            logger.debug(
                "Record %s removal dropped %d entities and %d relationships",
                record_id,
                len(removed[0]),
                len(removed[1]),
            )
        return removed

    def delete_entity(self, entity_id: str) -> bool:
        with self._lock:
            entity = self._entities.pop(entity_id, None)
            if entity is None:
                return False
            self._entity_keys.pop((normalize_name(entity.name), entity.type), None)
            for relationship_id in list(self._out.pop(entity_id, set()) | self._in.pop(entity_id, set())):
                self._delete_relationship(relationship_id)
            for record_id in entity.record_ids:
                linked = self._record_entities.get(record_id)
                if linked is not None:
                    linked.discard(entity_id)
                    if not linked:
                        del self._record_entities[record_id]
        logger.debug("Entity %s deleted", entity_id)
        return True

    # -- reads ----------------------------------------------------------

    def get_entity(self, entity_id: str) -> Entity | None:
        with self._lock:
            entity = self._entities.get(entity_id)
            return entity.snapshot() if entity else None

    def get_relationship(self, relationship_id: str) -> Relationship | None:
        with self._lock:
            relationship = self._relationships.get(relationship_id)
            return relationship.snapshot() if relationship else None

    def find_entity(self, name: str, type: Any = None) -> Entity | None:
        normalized = normalize_name(name)
        with self._lock:
            if type is not None:
                entity_id = self._entity_keys.get((normalized, _entity_type(type)))
                return self._entities[entity_id].snapshot() if entity_id else None
            candidates = [
                self._entities[entity_id]
                for (key_name, _), entity_id in self._entity_keys.items()
                if key_name == normalized
            ]
            if not candidates:
                return None
            candidates.sort(key=lambda entity: (-len(entity.record_ids), entity.type))
            return candidates[0].snapshot()

    def neighbors(self, entity_id: str, direction: Direction | str = Direction.BOTH) -> list[Relationship]:
        try:
            direction = Direction(getattr(direction, "value", direction))
        except ValueError as exc:
            raise ValidationError(f"Unknown direction: {direction!r}") from exc
        with self._lock:
            if entity_id not in self._entities:
                raise NotFoundError(f"Entity {entity_id} not found")
            ids: set[str] = set()
            if direction in (Direction.OUTGOING, Direction.BOTH):
                ids |= self._out.get(entity_id, set())
            if direction in (Direction.INCOMING, Direction.BOTH):
                ids |= self._in.get(entity_id, set())
            found = [self._relationships[relationship_id].snapshot() for relationship_id in ids]
        found.sort(key=lambda rel: (-rel.strength, rel.type, rel.id))
        return found

    def by_type(self, entity_type: Any, limit: int = 50) -> list[Entity]:
        wanted = _entity_type(entity_type)
        with self._lock:
            found = [entity.snapshot() for entity in self._entities.values() if entity.type == wanted]
        found.sort(key=lambda entity: (-len(entity.record_ids), entity.name.lower()))
        return found[:limit]

    def search(self, text: str, limit: int = 20, entity_type: Any = None) -> list[EntityMatch]:
        wanted = _entity_type(entity_type) if entity_type is not None else None
        matches: list[EntityMatch] = []
        with self._lock:
            for entity in self._entities.values():
                if wanted is not None and entity.type != wanted:
                    continue
                score = match_score(text, entity.name)
                if score <= 0:
                    continue
                degree = len(self._out.get(entity.id, ())) + len(self._in.get(entity.id, ()))
                matches.append(EntityMatch(entity.snapshot(), score, degree))
        matches.sort(key=lambda m: (-m.score, -m.relationship_count, m.entity.name.lower()))
        return matches[:limit]

    def path(
        self, from_id: str, to_id: str, max_depth: int = 3, directed: bool = False
    ) -> list[Relationship]:
        """Shortest walk from ``from_id`` to ``to_id``.

        Breadth-first, bounded by ``max_depth`` hops. Among walks of the
        same length the one with the highest summed strength wins. Returns
        an empty list when ``to_id`` is unreachable, and for ``from_id ==
        to_id``.
        """
        with self._lock:
            for endpoint in (from_id, to_id):
                if endpoint not in self._entities:
                    raise NotFoundError(f"Entity {endpoint} not found")
            if from_id == to_id or max_depth <= 0:
                return []

            best: dict[str, tuple[float, list[str]]] = {from_id: (0.0, [])}
            visited = {from_id}
            frontier = [from_id]
            for _ in range(max_depth):
                layer: dict[str, tuple[float, list[str]]] = {}
                for node in frontier:
                    strength, walk = best[node]
                    for relationship, other in self._steps(node, directed):
                        if other in visited:
                            continue
                        candidate = (strength + relationship.strength, walk + [relationship.id])
                        current = layer.get(other)
                        if current is None or candidate[0] > current[0]:
                            layer[other] = candidate
                if not layer:
                    return []
                if to_id in layer:
                    return [self._relationships[rid].snapshot() for rid in layer[to_id][1]]
                visited.update(layer)
                best.update(layer)
                frontier = sorted(layer)
            return []

    def all_entities(self) -> list[Entity]:
        with self._lock:
            found = [entity.snapshot() for entity in self._entities.values()]
        found.sort(key=lambda entity: (entity.created_at, entity.id))
        return found

    def all_relationships(self) -> list[Relationship]:
        with self._lock:
            found = [relationship.snapshot() for relationship in self._relationships.values()]
        found.sort(key=lambda rel: (rel.created_at, rel.id))
        return found

    def entities_for_record(self, record_id: str) -> list[Entity]:
        with self._lock:
            return [
                self._entities[entity_id].snapshot()
                for entity_id in self._record_entities.get(record_id, ())
            ]

    def records_for_entities(self, entity_ids: Iterable[str]) -> dict[str, list[str]]:
        found: dict[str, list[str]] = defaultdict(list)
        with self._lock:
            for entity_id in entity_ids:
                entity = self._entities.get(entity_id)
                if entity is None:
                    continue
                for record_id in entity.record_ids:
                    found[record_id].append(entity_id)
        return dict(found)

    def record_ids(self) -> set[str]:
        with self._lock:
            return set(self._record_entities) | set(self._record_relationships)

    def statistics(self) -> GraphStatistics:
        with self._lock:
            entity_types = Counter(entity.type for entity in self._entities.values())
            relationship_types = Counter(rel.type for rel in self._relationships.values())
            entity_count = len(self._entities)
            relationship_count = len(self._relationships)
        return GraphStatistics(
            entity_count=entity_count,
            relationship_count=relationship_count,
            entity_types=dict(entity_types),
            relationship_types=dict(relationship_types),
            avg_relationships_per_entity=(
                2 * relationship_count / entity_count if entity_count else 0.0
            ),
        )

    @property
    def entity_count(self) -> int:
        with self._lock:
            return len(self._entities)

    @property
    def relationship_count(self) -> int:
        with self._lock:
            return len(self._relationships)

    # -- internals ------------------------------------------------------

    def _steps(self, node: str, directed: bool) -> list[tuple[Relationship, str]]:
        steps = [
            (self._relationships[rid], self._relationships[rid].to_id)
            for rid in sorted(self._out.get(node, ()))
        ]
        if not directed:
            steps.extend(
                (self._relationships[rid], self._relationships[rid].from_id)
                for rid in sorted(self._in.get(node, ()))
            )
        return steps

    def _strip_record(self, record_id: str) -> tuple[set[str], set[str]]:
        entity_ids = self._record_entities.pop(record_id, set())
        relationship_ids = self._record_relationships.pop(record_id, set())
        for entity_id in entity_ids:
            entity = self._entities.get(entity_id)
            if entity is None:
                continue
            entity.observations = [
                item for item in entity.observations if item.record_id != record_id
            ]
            entity.record_ids.discard(record_id)
        for relationship_id in relationship_ids:
            relationship = self._relationships.get(relationship_id)
            if relationship is None:
                continue
            relationship.support.pop(record_id, None)
            relationship.strength = min(1.0, sum(relationship.support.values()))
        return entity_ids, relationship_ids

    def _collect(
        self, entity_ids: Iterable[str], relationship_ids: Iterable[str]
    ) -> tuple[list[str], list[str]]:
        removed_relationships = []
        for relationship_id in relationship_ids:
            relationship = self._relationships.get(relationship_id)
            if relationship is not None and not relationship.support:
                self._delete_relationship(relationship_id)
                removed_relationships.append(relationship_id)
        removed_entities = []
        for entity_id in entity_ids:
            entity = self._entities.get(entity_id)
            if entity is not None and not entity.record_ids and not entity.pinned:
                self.delete_entity(entity_id)
                removed_entities.append(entity_id)
        return removed_entities, removed_relationships

    def _delete_relationship(self, relationship_id: str) -> bool:
        relationship = self._relationships.pop(relationship_id, None)
        if relationship is None:
            return False
        self._relationship_keys.pop(
            (relationship.from_id, relationship.to_id, relationship.type), None
        )
        self._out.get(relationship.from_id, set()).discard(relationship_id)
        self._in.get(relationship.to_id, set()).discard(relationship_id)
        for record_id in relationship.record_ids:
            linked = self._record_relationships.get(record_id)
            if linked is not None:
                linked.discard(relationship_id)
                if not linked:
                    del self._record_relationships[record_id]
        return True
