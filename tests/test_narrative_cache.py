"""
Tests for the content-addressed narrative cache.
"""

import threading

import pytest

from narrative_generation.cache import narrative_cache
from narrative_generation.cache.narrative_cache import (
    FileNarrativeCache,
    InMemoryNarrativeCache,
    NarrativeCacheProtocol,
    make_cache_key,
)
from narrative_generation.core.models import CacheEntry, ValidationResult


def make_entry(key, text="Narrative text.", model_id="model-a"):
    return CacheEntry(
        key=key,
        text=text,
        validation=ValidationResult(passed=True, quality_score=90.0),
        model_id=model_id,
        prompt_template_id="promem@00000000",
    )


class TestCacheKey:
    """Key covers input, model, template and temperature."""

    def test_whitespace_in_input_is_normalized(self):
        a = make_cache_key("Memory  scores\n average", "m", "t@1", 0.2)
        b = make_cache_key("Memory scores average", "m", "t@1", 0.2)

        assert a == b

    @pytest.mark.parametrize(
        "changed",
        [
            ("other input", "m", "t@1", 0.2),
            ("input", "other-model", "t@1", 0.2),
            ("input", "m", "t@2", 0.2),
            ("input", "m", "t@1", 0.35),
        ],
    )
    def test_every_component_changes_the_key(self, changed):
        assert make_cache_key("input", "m", "t@1", 0.2) != make_cache_key(*changed)


@pytest.fixture(params=["file", "memory"])
def cache(request, tmp_path):
    if request.param == "file":
        return FileNarrativeCache(tmp_path / "cache")
    return InMemoryNarrativeCache()


class TestInsertIfAbsent:
    """First writer wins; later writes are refused."""

    def test_implements_protocol(self, cache):
        assert isinstance(cache, NarrativeCacheProtocol)

    def test_miss_then_hit(self, cache):
        key = make_cache_key("input", "m", "t@1", 0.2)

        assert cache.get(key) is None
        assert cache.put_if_absent(key, make_entry(key)) is True
        assert cache.get(key).text == "Narrative text."

    def test_second_write_is_refused(self, cache):
        key = make_cache_key("input", "m", "t@1", 0.2)
        cache.put_if_absent(key, make_entry(key, text="first"))

        assert cache.put_if_absent(key, make_entry(key, text="second")) is False
        assert cache.get(key).text == "first"
        assert len(cache) == 1

    def test_concurrent_writers_store_exactly_one(self, cache):
        key = make_cache_key("input", "m", "t@1", 0.2)
        start = threading.Barrier(8)
        wins = []

        def writer(n):
            start.wait()
            if cache.put_if_absent(key, make_entry(key, text=f"writer {n}")):
                wins.append(n)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(wins) == 1
        assert cache.get(key).text == f"writer {wins[0]}"
        assert len(cache) == 1

    def test_clear(self, cache):
        key = make_cache_key("input", "m", "t@1", 0.2)
        cache.put_if_absent(key, make_entry(key))

        assert cache.clear() == 1
        assert cache.get(key) is None


class TestFileCacheCorruption:
    """Unreadable entries are misses, never errors."""

    def test_corrupt_entry_is_quarantined(self, tmp_path):
        cache = FileNarrativeCache(tmp_path)
        key = make_cache_key("input", "m", "t@1", 0.2)
        (tmp_path / f"{key}.json").write_text("{not json", encoding="utf-8")

        assert cache.get(key) is None
        assert (tmp_path / f"{key}.json.corrupt").exists()
        assert cache.put_if_absent(key, make_entry(key)) is True
        assert cache.get(key).text == "Narrative text."

    def test_entry_with_mismatched_key_is_a_miss(self, tmp_path):
        cache = FileNarrativeCache(tmp_path)
        key = make_cache_key("input", "m", "t@1", 0.2)
        other = make_cache_key("other", "m", "t@1", 0.2)
        cache.put_if_absent(other, make_entry(other))
        (tmp_path / f"{other}.json").rename(tmp_path / f"{key}.json")

        assert cache.get(key) is None

    def test_no_temporary_files_left_behind(self, tmp_path):
        cache = FileNarrativeCache(tmp_path)
        key = make_cache_key("input", "m", "t@1", 0.2)
        cache.put_if_absent(key, make_entry(key))
        cache.put_if_absent(key, make_entry(key))

        assert [p.name for p in tmp_path.iterdir()] == [f"{key}.json"]

    def test_entries_survive_reopening(self, tmp_path):
        key = make_cache_key("input", "m", "t@1", 0.2)
        FileNarrativeCache(tmp_path).put_if_absent(key, make_entry(key))

        reopened = FileNarrativeCache(tmp_path)

        assert reopened.get(key).validation.quality_score == 90.0

    def test_fresh_entry_written_after_failed_read_is_kept(self, tmp_path, monkeypatch):
        cache = FileNarrativeCache(tmp_path)
        key = make_cache_key("input", "m", "t@1", 0.2)
        path = tmp_path / f"{key}.json"
        path.write_text("{not json", encoding="utf-8")
        decode = cache._decode

        def decode_after_concurrent_repair(k, raw):
            # Another reader moves the bad file aside and a writer stores a new entry
            path.rename(tmp_path / "moved-aside")
            FileNarrativeCache(tmp_path).put_if_absent(key, make_entry(key))
            return decode(k, raw)

        monkeypatch.setattr(cache, "_decode", decode_after_concurrent_repair)
        assert cache.get(key) is None
        monkeypatch.undo()

        assert not (tmp_path / f"{key}.json.corrupt").exists()
        assert cache.get(key).text == "Narrative text."


class TestFileCacheWriteFailures:
    """A failed write is reported as not stored, never raised."""

    def test_link_refused_by_filesystem(self, tmp_path, monkeypatch):
        cache = FileNarrativeCache(tmp_path)
        key = make_cache_key("input", "m", "t@1", 0.2)

        def no_hard_links(src, dst):
            raise PermissionError(1, "Operation not permitted")

        monkeypatch.setattr(narrative_cache.os, "link", no_hard_links)

        assert cache.put_if_absent(key, make_entry(key)) is False
        assert list(tmp_path.iterdir()) == []
        assert cache.get(key) is None

    def test_disk_full_on_temporary_file(self, tmp_path, monkeypatch):
        cache = FileNarrativeCache(tmp_path)
        key = make_cache_key("input", "m", "t@1", 0.2)

        def disk_full(*args, **kwargs):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(narrative_cache.tempfile, "mkstemp", disk_full)

        assert cache.put_if_absent(key, make_entry(key)) is False
