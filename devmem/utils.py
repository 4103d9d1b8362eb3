import hashlib
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

_WORD_RE = re.compile(r"[^\W_][\w.+#-]*")
_NAME_SEPARATORS_RE = re.compile(r"[-_\s]+")


def normalize_text(text: str) -> str:
    text = text.strip().casefold()
    text = re.sub(r"\s+", " ", text)
    return text


def normalize_name(name: str) -> str:
    # "Session-Cache", "session_cache" and "session  cache" share one key.
    return _NAME_SEPARATORS_RE.sub(" ", name.strip().lower()).strip()


def terms(text: str) -> list[str]:
    return [term.rstrip(".") for term in _WORD_RE.findall(text.casefold()) if term.rstrip(".")]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint(*parts: str) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


class KeyedLocks:
    """One lock per key, created on demand and dropped when nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
