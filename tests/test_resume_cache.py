from __future__ import annotations

import time

from classquiz.core.services.resume_cache import (
    FileResumeCache,
    MemoryResumeCache,
    ResumeSnapshot,
    resume_key,
)


def _snapshot(**overrides) -> ResumeSnapshot:
    values = {"quiz_id": "quiz-1", "answers": {"q_mc": ["b"], "q_fb": {"b1": "Paris"}}, "current_index": 2}
    values.update(overrides)
    return ResumeSnapshot(**values)


def test_resume_key_is_scoped_by_quiz():
    assert resume_key("abc") == "quiz_session_abc"


def test_memory_cache_round_trip_and_delete():
    cache = MemoryResumeCache()
    cache.save("k", _snapshot(remaining_seconds=42))
    loaded = cache.load("k")
    assert loaded.answers == {"q_mc": ["b"], "q_fb": {"b1": "Paris"}}
    assert loaded.remaining_seconds == 42
    cache.delete("k")
    assert cache.load("k") is None
    cache.delete("k")


def test_expired_snapshot_is_dropped():
    cache = MemoryResumeCache(ttl_seconds=60)
    old = int((time.time() - 120) * 1000)
    cache.save("k", _snapshot(updated_at=old))
    assert cache.load("k") is None
    assert "k" not in cache


def test_file_cache_persists_between_instances(tmp_path):
    FileResumeCache(tmp_path).save("quiz_session_a/b", _snapshot())
    loaded = FileResumeCache(tmp_path).load("quiz_session_a/b")
    assert loaded.current_index == 2
    assert [p.name for p in tmp_path.iterdir()] == ["quiz_session_a_b.json"]


def test_file_cache_discards_corrupt_entries(tmp_path):
    cache = FileResumeCache(tmp_path)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert cache.load("broken") is None
    assert not (tmp_path / "broken.json").exists()
    assert cache.load("never-written") is None
