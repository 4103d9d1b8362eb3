from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Union
from uuid import uuid4

from devmem.errors import ValidationError
from devmem.utils import utc_now

MetadataValue = Union[str, int, float, bool, None]

_UNSET: Any = object()


class MemoryType(str, Enum):
    CODE_SNIPPET = "code_snippet"
    DOCUMENTATION = "documentation"
    MEETING_NOTES = "meeting_notes"
    DECISION = "decision"
    API_CALL = "api_call"
    DEBUG_SESSION = "debug_session"
    PROJECT_CONTEXT = "project_context"
    INFRA_RESOURCE = "infra_resource"
    COMMAND = "command"
    LINK = "link"
    NOTE = "note"


@dataclass(frozen=True)
class MemoryRecord:
    id: str
    type: MemoryType
    title: str
    content: str
    tags: tuple[str, ...]
    metadata: dict[str, MetadataValue]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class MemoryPatch:
    title: Any = _UNSET
    content: Any = _UNSET
    type: Any = _UNSET
    tags: Any = _UNSET
    metadata: Any = _UNSET

    @classmethod
    def from_kwargs(cls, **changes: Any) -> "MemoryPatch":
        unknown = set(changes) - {"title", "content", "type", "tags", "metadata"}
        if unknown:
            raise ValidationError(f"Unknown memory fields: {', '.join(sorted(unknown))}")
        return cls(**changes)


@dataclass(frozen=True)
class RecordChanges:
    content_changed: bool = False
    tags_changed: bool = False
    fields: tuple[str, ...] = field(default_factory=tuple)

    @property
    def reindex_graph(self) -> bool:
        return self.content_changed or self.tags_changed


def coerce_type(value: MemoryType | str) -> MemoryType:
    if isinstance(value, MemoryType):
        return value
    try:
        return MemoryType(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown memory type: {value!r}") from exc


def normalize_tags(tags: Iterable[str] | None) -> tuple[str, ...]:
    if tags is None:
        return ()
    if isinstance(tags, str):
        raise ValidationError("Tags must be a collection of strings, not a string")
    seen: set[str] = set()
    out: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError(f"Tags must be strings, got {type(tag).__name__}")
        cleaned = tag.strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        out.append(cleaned)
    return tuple(out)


def validate_metadata(metadata: Mapping[str, Any] | None) -> dict[str, MetadataValue]:
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise ValidationError("Metadata must be a mapping of string keys to scalar values")
    out: dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f"Metadata keys must be non-empty strings, got {key!r}")
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"Metadata value for {key!r} must be a string, number, boolean or null"
            )
        out[key] = value
    return out


def _require_content(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Memory content cannot be empty")
    return content


def _require_title(title: Any) -> str:
    if not isinstance(title, str):
        raise ValidationError("Memory title must be a string")
    return title.strip()


def _same(key: str, old: Any, new: Any) -> bool:
    if key == "tags":
        return {tag.lower() for tag in old} == {tag.lower() for tag in new}
    return old == new


def new_record(
    content: str,
    title: str = "",
    type: MemoryType | str = MemoryType.NOTE,
    tags: Iterable[str] | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> MemoryRecord:
    now = utc_now()
    return MemoryRecord(
        id=str(uuid4()),
        type=coerce_type(type),
        title=_require_title(title),
        content=_require_content(content),
        tags=normalize_tags(tags),
        metadata=validate_metadata(metadata),
        created_at=now,
        updated_at=now,
    )


def apply_patch(record: MemoryRecord, patch: MemoryPatch) -> tuple[MemoryRecord, RecordChanges]:
    values: dict[str, Any] = {}
    if patch.title is not _UNSET:
        values["title"] = _require_title(patch.title)
    if patch.content is not _UNSET:
        values["content"] = _require_content(patch.content)
    if patch.type is not _UNSET:
        values["type"] = coerce_type(patch.type)
    if patch.tags is not _UNSET:
        values["tags"] = normalize_tags(patch.tags)
    if patch.metadata is not _UNSET:
        values["metadata"] = validate_metadata(patch.metadata)

    changed = tuple(key for key, value in values.items() if not _same(key, getattr(record, key), value))
    now = utc_now()
    updated_at = now if now > record.updated_at else record.updated_at
    updated = replace(record, updated_at=updated_at, **values)
    return updated, RecordChanges(
        content_changed="content" in changed,
        tags_changed="tags" in changed,
        fields=changed,
    )
