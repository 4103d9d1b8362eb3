from __future__ import annotations

from dataclasses import dataclass, field

from devmem.utils import normalize_name


@dataclass(frozen=True)
class ExtractedEntity:
    name: str
    type: str
    observation: str
    positions: tuple[int, ...] = ()
    from_tag: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return normalize_name(self.name), self.type


@dataclass(frozen=True)
class ExtractedRelationship:
    source: tuple[str, str]
    target: tuple[str, str]
    type: str
    strength: float


@dataclass(frozen=True)
class Extraction:
    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[ExtractedRelationship] = field(default_factory=list)

    def entity(self, name: str, type: str) -> ExtractedEntity | None:
        key = (normalize_name(name), type)
        for item in self.entities:
            if item.key == key:
                return item
        return None

    def names(self) -> set[tuple[str, str]]:
        return {(item.name, item.type) for item in self.entities}
