"""Local resume snapshots for in-progress quiz sessions.

Snapshots are a best-effort cache: losing one means the session starts from
the server state, never that the session fails. Snapshots older than
``RESUME_SNAPSHOT_TTL_SECONDS`` are treated as absent.
"""

from __future__ import annotations

import logging
from pathlib import Path
import re
import time
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from classquiz.constants.quiz_constants import RESUME_KEY_PREFIX, RESUME_SNAPSHOT_TTL_SECONDS

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class ResumeSnapshot(BaseModel):
    """Everything needed to reseed an active session."""

    quiz_id: str
    answers: dict[str, Any] = Field(default_factory=dict)
    current_index: int = 0
    remaining_seconds: int | None = None
    updated_at: int = Field(default_factory=lambda: int(time.time() * 1000))

    def is_expired(self, now_ms: int | None = None, ttl_seconds: int = RESUME_SNAPSHOT_TTL_SECONDS) -> bool:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms - self.updated_at > ttl_seconds * 1000


def resume_key(quiz_id: str) -> str:
    return f"{RESUME_KEY_PREFIX}{quiz_id}"


class ResumeCache(Protocol):
    """Key-value storage for snapshots, scoped to one student."""

    def load(self, key: str) -> ResumeSnapshot | None: ...

    def save(self, key: str, snapshot: ResumeSnapshot) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryResumeCache:
    """Keeps serialized snapshots in a dict, like a browser's local storage."""

    def __init__(self, ttl_seconds: int = RESUME_SNAPSHOT_TTL_SECONDS) -> None:
        self._entries: dict[str, str] = {}
        self._ttl_seconds = ttl_seconds

    def load(self, key: str) -> ResumeSnapshot | None:
        raw = self._entries.get(key)
        if raw is None:
            return None
        snapshot = _parse_snapshot(key, raw)
        if snapshot is None or snapshot.is_expired(ttl_seconds=self._ttl_seconds):
            self._entries.pop(key, None)
            return None
        return snapshot

    def save(self, key: str, snapshot: ResumeSnapshot) -> None:
        self._entries[key] = snapshot.model_dump_json()

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class FileResumeCache:
    """Stores one JSON document per key under ``directory``."""

    def __init__(self, directory: Path, ttl_seconds: int = RESUME_SNAPSHOT_TTL_SECONDS) -> None:
        self._directory = directory
        self._ttl_seconds = ttl_seconds

    def load(self, key: str) -> ResumeSnapshot | None:
        path = self._path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        snapshot = _parse_snapshot(key, raw)
        if snapshot is None or snapshot.is_expired(ttl_seconds=self._ttl_seconds):
            path.unlink(missing_ok=True)
            return None
        return snapshot

    def save(self, key: str, snapshot: ResumeSnapshot) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(snapshot.model_dump_json(), encoding="utf-8")
        tmp_path.replace(path)

    def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_FILENAME_CHARS.sub('_', key)}.json"


def _parse_snapshot(key: str, raw: str) -> ResumeSnapshot | None:
    try:
        return ResumeSnapshot.model_validate_json(raw)
    except ValidationError:
        logger.warning("Discarding unreadable resume snapshot %s", key)
        return None
