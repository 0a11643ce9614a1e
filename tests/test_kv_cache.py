"""Tests for the debounced JSON key-value cache."""

import asyncio
import json
from unittest.mock import patch

import pytest

from pocketpa.contacts.directory import ContactDirectory
from pocketpa.contacts.resolver import EntityResolver
from pocketpa.storage.kv_cache import JsonKVCache

from conftest import text_message


def _cache(tmp_path, delay=0.05) -> JsonKVCache:
    return JsonKVCache(str(tmp_path / "kv.json"), str(tmp_path / "kv_backup.json"), save_delay=delay)


def _read(path) -> dict:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


# ── Merge semantics ─────────────────────────────────────────

class TestPut:
    def test_non_null_fields_overwrite(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"name": "Alex", "notify": "Al"})
        cache.put("a", {"name": "Alexandra", "notify": None})
        assert cache.get_entry("a") == {"name": "Alexandra", "notify": "Al"}

    def test_unchanged_put_returns_false(self, tmp_path):
        cache = _cache(tmp_path)
        assert cache.put("a", {"name": "Alex"}) is True
        cache.flush()
        assert cache.put("a", {"name": "Alex", "notify": None}) is False
        assert not cache.dirty

    def test_put_without_loop_stays_dirty(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"name": "Alex"})
        assert cache.dirty
        assert not (tmp_path / "kv.json").exists()

    def test_contains_and_len(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"x": 1})
        cache.put("b", {"x": 2})
        assert "a" in cache and "c" not in cache
        assert len(cache) == 2
        assert list(cache.get()) == ["a", "b"]


# ── Debounce ────────────────────────────────────────────────

class TestDebounce:
    @pytest.mark.asyncio
    async def test_many_puts_one_flush(self, tmp_path):
        cache = _cache(tmp_path, delay=0.05)
        with patch.object(cache, "flush", wraps=cache.flush) as flush:
            for i in range(25):
                cache.put("k", {"n": i, "first": "yes" if i == 0 else None})
            await asyncio.sleep(0.2)

        assert flush.call_count == 1
        assert _read(tmp_path / "kv.json") == {"k": {"n": 24, "first": "yes"}}
        assert not cache.dirty

    @pytest.mark.asyncio
    async def test_timer_restarts_on_each_put(self, tmp_path):
        cache = _cache(tmp_path, delay=0.2)
        cache.put("k", {"n": 1})
        await asyncio.sleep(0.12)
        cache.put("k", {"n": 2})
        await asyncio.sleep(0.12)
        assert not (tmp_path / "kv.json").exists()
        await asyncio.sleep(0.25)
        assert _read(tmp_path / "kv.json") == {"k": {"n": 2}}

    @pytest.mark.asyncio
    async def test_shutdown_flushes_pending(self, tmp_path):
        cache = _cache(tmp_path, delay=60)
        cache.put("k", {"n": 1})
        await cache.shutdown()
        assert _read(tmp_path / "kv.json") == {"k": {"n": 1}}
        assert not cache.dirty

    @pytest.mark.asyncio
    async def test_clear_flushes_immediately(self, tmp_path):
        cache = _cache(tmp_path, delay=60)
        cache.put("k", {"n": 1})
        cache.flush()
        cache.clear()
        assert _read(tmp_path / "kv.json") == {}
        assert _read(tmp_path / "kv_backup.json") == {"k": {"n": 1}}


# ── Backup and recovery ─────────────────────────────────────

class TestBackup:
    def test_backup_holds_previous_primary(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"v": 1})
        cache.flush()
        before = (tmp_path / "kv.json").read_text(encoding="utf-8")

        cache.put("a", {"v": 2})
        cache.flush()
        assert (tmp_path / "kv_backup.json").read_text(encoding="utf-8") == before
        assert _read(tmp_path / "kv.json") == {"a": {"v": 2}}

    def test_first_flush_creates_no_backup(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"v": 1})
        cache.flush()
        assert not (tmp_path / "kv_backup.json").exists()

    def test_corrupt_primary_falls_back_to_backup(self, tmp_path):
        (tmp_path / "kv.json").write_text("{not json", encoding="utf-8")
        (tmp_path / "kv_backup.json").write_text(json.dumps({"a": {"v": 1}}), encoding="utf-8")
        cache = _cache(tmp_path)
        assert cache.load() == {"a": {"v": 1}}

    def test_both_corrupt_gives_empty(self, tmp_path):
        (tmp_path / "kv.json").write_text("[1, 2]", encoding="utf-8")
        (tmp_path / "kv_backup.json").write_text("garbage", encoding="utf-8")
        cache = _cache(tmp_path)
        assert cache.load() == {}

    def test_missing_file_starts_fresh(self, tmp_path):
        cache = JsonKVCache(str(tmp_path / "sub" / "kv.json"), str(tmp_path / "sub" / "b.json"))
        assert cache.load() == {}
        assert (tmp_path / "sub").is_dir()

    def test_flush_failure_keeps_dirty(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"v": 1})
        with patch("pocketpa.storage.kv_cache.os.replace", side_effect=OSError("disk full")):
            assert cache.flush() is False
        assert cache.dirty

    def test_file_info(self, tmp_path):
        cache = _cache(tmp_path)
        cache.put("a", {"v": 1})
        cache.flush()
        info = cache.file_info()
        assert info["main_file"]["exists"] is True
        assert info["main_file"]["size"] > 0
        assert info["backup_file"]["exists"] is False
        assert info["entry_count"] == 1

    def test_non_object_entries_dropped_on_load(self, tmp_path):
        (tmp_path / "kv.json").write_text(
            json.dumps({"1@s.whatsapp.net": None, "2@s.whatsapp.net": "Alex", "3@s.whatsapp.net": {"name": "Bob"}}),
            encoding="utf-8",
        )
        cache = _cache(tmp_path)
        assert cache.load() == {"3@s.whatsapp.net": {"name": "Bob"}}
        assert cache.put("2@s.whatsapp.net", {"name": "Alex"}) is True


class TestMalformedContacts:
    @pytest.mark.asyncio
    async def test_directory_usable_after_malformed_load(self, tmp_path):
        (tmp_path / "kv.json").write_text(
            json.dumps({"1@s.whatsapp.net": None, "2@s.whatsapp.net": "Alex", "3@s.whatsapp.net": {"name": "Bob"}}),
            encoding="utf-8",
        )
        directory = ContactDirectory(_cache(tmp_path))
        assert directory.load() == 1

        result = await EntityResolver(directory).resolve("bob")
        assert result.identifier == "3@s.whatsapp.net"
        assert directory.stats()["total"] == 1
        assert directory.observe_message(text_message("2@s.whatsapp.net", "hi", push_name="Al")) == "2@s.whatsapp.net"
