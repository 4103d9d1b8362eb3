from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator

from devmem.config import StoreConfig
from devmem.errors import ValidationError
from devmem.memory.models import (
    MemoryPatch,
    MemoryRecord,
    MemoryType,
    RecordChanges,
    apply_patch,
    coerce_type,
)
from devmem.utils import normalize_text, terms

logger = logging.getLogger(__name__)

_COLUMNS = "id, type, title, content, tags, metadata, created_at, updated_at"

_STOPWORDS = frozenset(
    "a an and are as at be by for from how i in is it of on or the to was what when where "
    "which who why with".split()
)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _query_terms(query: str) -> list[str]:
    found = list(dict.fromkeys(terms(query)))
    meaningful = [term for term in found if term not in _STOPWORDS]
    return meaningful or found


@dataclass
class RecordStore:
    config: StoreConfig

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.config.path, check_same_thread=False)
        # SQLite LIKE folds ASCII case only.
        self._conn.create_function("casefold", 1, _casefold, deterministic=True)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS memories ("
            "id TEXT PRIMARY KEY, "
            "type TEXT NOT NULL, "
            "title TEXT NOT NULL, "
            "content TEXT NOT NULL, "
            "tags TEXT NOT NULL, "
            "metadata TEXT NOT NULL, "
            "created_at TEXT NOT NULL, "
            "updated_at TEXT NOT NULL"
            ")"
        )
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS memory_tags ("
            "memory_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE, "
            "tag TEXT NOT NULL, "
            "PRIMARY KEY (memory_id, tag)"
            ")"
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type)")
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_memories_updated_at ON memories(updated_at)"
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_memory_tags_tag ON memory_tags(tag)")
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def create(self, record: MemoryRecord) -> str:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        self._to_row(record),
                    )
                    self._write_tags(record)
            except sqlite3.IntegrityError as exc:
                raise ValidationError(f"Memory {record.id} already exists") from exc
        logger.debug("Memory %s created", record.id)
        return record.id

    def get(self, memory_id: str) -> MemoryRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
        return self._from_row(row) if row else None

    def get_many(self, memory_ids: Iterable[str]) -> dict[str, MemoryRecord]:
        ids = list(dict.fromkeys(memory_ids))
        found: dict[str, MemoryRecord] = {}
        # SQLite caps bound parameters per statement.
        for start in range(0, len(ids), 500):
            chunk = ids[start : start + 500]
            placeholders = ", ".join("?" for _ in chunk)
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM memories WHERE id IN ({placeholders})", chunk
                ).fetchall()
            for row in rows:
                record = self._from_row(row)
                found[record.id] = record
        return found

    def update(
        self, memory_id: str, patch: MemoryPatch
    ) -> tuple[MemoryRecord, RecordChanges] | None:
        with self._lock:
            current = self.get(memory_id)
            if current is None:
                return None
            updated, changes = apply_patch(current, patch)
            with self._conn:
                self._conn.execute(
                    "UPDATE memories SET type = ?, title = ?, content = ?, tags = ?, "
                    "metadata = ?, updated_at = ? WHERE id = ?",
                    (
                        updated.type.value,
                        updated.title,
                        updated.content,
                        json.dumps(list(updated.tags), ensure_ascii=False),
                        json.dumps(updated.metadata, ensure_ascii=False),
                        updated.updated_at.isoformat(timespec="microseconds"),
                        updated.id,
                    ),
                )
                if changes.tags_changed:
                    self._conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (updated.id,))
                    self._write_tags(updated)
        logger.debug("Memory %s updated (%s)", memory_id, ", ".join(changes.fields) or "no changes")
        return updated, changes

    def delete(self, memory_id: str) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Memory %s deleted", memory_id)
        return deleted

    def list_recent(self, limit: int = 20, offset: int = 0) -> list[MemoryRecord]:
        return self._select(
            f"SELECT {_COLUMNS} FROM memories ORDER BY updated_at DESC, id LIMIT ? OFFSET ?",
            (limit, offset),
        )

    def find_by_type(
        self, memory_type: MemoryType | str, limit: int = 50, offset: int = 0
    ) -> list[MemoryRecord]:
        value = coerce_type(memory_type).value
        return self._select(
            f"SELECT {_COLUMNS} FROM memories WHERE type = ? "
            "ORDER BY updated_at DESC, id LIMIT ? OFFSET ?",
            (value, limit, offset),
        )

    def find_by_tags(
        self, tags: Iterable[str], limit: int = 50, offset: int = 0
    ) -> list[MemoryRecord]:
        wanted = sorted({tag.strip().lower() for tag in tags if tag and tag.strip()})
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        columns = ", ".join(f"m.{name.strip()}" for name in _COLUMNS.split(","))
        return self._select(
            f"SELECT DISTINCT {columns} FROM memories m "
            "JOIN memory_tags t ON t.memory_id = m.id "
            f"WHERE t.tag IN ({placeholders}) "
            "ORDER BY m.updated_at DESC, m.id LIMIT ? OFFSET ?",
            (*wanted, limit, offset),
        )

    def lexical_search(self, query: str, limit: int = 50) -> list[tuple[str, float]]:
        phrase = normalize_text(query)
        query_terms = _query_terms(query)
        if not query_terms:
            return []
        clauses = []
        params: list[str] = []
        for term in query_terms:
            pattern = f"%{_escape_like(term)}%"
            clauses.append(
                "(casefold(title) LIKE ? ESCAPE '\\' OR casefold(content) LIKE ? ESCAPE '\\' "
                "OR casefold(tags) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, title, content, tags, updated_at FROM memories "
                f"WHERE {' OR '.join(clauses)}",
                params,
            ).fetchall()

        scored: list[tuple[float, str, str]] = []
        for memory_id, title, content, tags_json, updated_at in rows:
            score = self._lexical_score(
                phrase, query_terms, title.casefold(), content.casefold(), json.loads(tags_json)
            )
            if score > 0:
                scored.append((score, updated_at, memory_id))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [(memory_id, score) for score, _, memory_id in scored[:limit]]

    def count(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0])

    def ids(self) -> set[str]:
        with self._lock:
            return {row[0] for row in self._conn.execute("SELECT id FROM memories")}

    def all_tags(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT DISTINCT tag FROM memory_tags ORDER BY tag").fetchall()
        return [row[0] for row in rows]

    def iter_all(self, batch_size: int = 200) -> Iterator[MemoryRecord]:
        offset = 0
        while True:
            batch = self._select(
                f"SELECT {_COLUMNS} FROM memories ORDER BY created_at, id LIMIT ? OFFSET ?",
                (batch_size, offset),
            )
            if not batch:
                return
            yield from batch
            offset += len(batch)

    def _lexical_score(
        self,
        phrase: str,
        query_terms: list[str],
        title: str,
        content: str,
        tags: list[str],
    ) -> float:
        lowered_tags = [tag.casefold() for tag in tags]
        total = 0.0
        matched = 0
        for term in query_terms:
            hit = 0.0
            if term in title:
                hit += 3.0
            if term in lowered_tags:
                hit += 2.5
            elif any(term in tag for tag in lowered_tags):
                hit += 1.5
            occurrences = content.count(term)
            if occurrences:
                hit += 1.0 + min(occurrences - 1, 4) * 0.25
            if hit:
                matched += 1
                total += hit
        if not matched:
            return 0.0
        coverage = matched / len(query_terms)
        score = total / len(query_terms) * (0.5 + 0.5 * coverage)
        if len(query_terms) > 1:
            if phrase in title:
                score += 2.0
            elif phrase in content:
                score += 1.0
        return score

    def _select(self, sql: str, params: tuple) -> list[MemoryRecord]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    def _write_tags(self, record: MemoryRecord) -> None:
        self._conn.executemany(
            "INSERT OR IGNORE INTO memory_tags (memory_id, tag) VALUES (?, ?)",
            [(record.id, tag.lower()) for tag in record.tags],
        )

    def _to_row(self, record: MemoryRecord) -> tuple:
        return (
            record.id,
            record.type.value,
            record.title,
            record.content,
            json.dumps(list(record.tags), ensure_ascii=False),
            json.dumps(record.metadata, ensure_ascii=False),
            record.created_at.isoformat(timespec="microseconds"),
            record.updated_at.isoformat(timespec="microseconds"),
        )

    def _from_row(self, row: tuple) -> MemoryRecord:
        return MemoryRecord(
            id=row[0],
            type=MemoryType(row[1]),
            title=row[2],
            content=row[3],
            tags=tuple(json.loads(row[4])),
            metadata=json.loads(row[5]),
            created_at=datetime.fromisoformat(row[6]),
            updated_at=datetime.fromisoformat(row[7]),
        )
