"""Persistent key-value cache — one JSON object on disk, debounced writes.

The whole mapping lives in memory. Mutations go through put(), which merges
the non-null fields of a partial entry into the existing one and (re)starts a
quiet-period timer; when the timer fires the full mapping is written once,
no matter how many puts happened in between.

Every write first copies the current primary file to the backup path, then
writes the new content to a temp file and atomically replaces the primary.
Loading falls back to the backup when the primary is unreadable, and to an
empty map when both are. Nothing in here raises to the caller.
"""

import asyncio
import json
import logging
import os
import shutil
from typing import Any, Optional

logger = logging.getLogger("pocketpa.storage.kv")

_DEFAULT_SAVE_DELAY = 5.0  # seconds of quiet before a write


class JsonKVCache:
    """File-backed ``{key: {field: value}}`` map with debounced flushes.

    Usage:
        cache = JsonKVCache("data/contacts.json", "data/contacts_backup.json")
        cache.load()
        cache.put("123@s.whatsapp.net", {"name": "Alex"})
        ...
        await cache.shutdown()
    """

    def __init__(
        self,
        path: str,
        backup_path: str,
        save_delay: float = _DEFAULT_SAVE_DELAY,
    ):
        self.path = path
        self.backup_path = backup_path
        self.save_delay = save_delay
        self._data: dict[str, dict[str, Any]] = {}
        self._dirty = False
        self._save_task: Optional[asyncio.Task] = None

    # ── Lifecycle ──────────────────────────────────────────────

    def load(self) -> dict[str, dict[str, Any]]:
        """Load the mapping from disk (primary, then backup, then empty)."""
        self._ensure_dir()

        if not os.path.exists(self.path):
            logger.info(f"No cache file at {self.path}, starting fresh")
            self._data = {}
            return self._data

        try:
            self._data = self._read(self.path)
            logger.info(f"Loaded {len(self._data)} entries from {self.path}")
            return self._data
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {self.path}: {e}")

        try:
            if os.path.exists(self.backup_path):
                self._data = self._read(self.backup_path)
                logger.info(f"Loaded {len(self._data)} entries from backup {self.backup_path}")
                return self._data
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load backup {self.backup_path}: {e}")

        logger.warning(f"Both {self.path} and its backup are unreadable — starting with an empty cache")
        self._data = {}
        return self._data

    async def shutdown(self):
        """Cancel the pending timer and write any unsaved changes."""
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
            try:
                await self._save_task
            except asyncio.CancelledError:
                pass
        self._save_task = None
        if self._dirty:
            self.flush()

    # ── Access ────────────────────────────────────────────────

    def get(self) -> dict[str, dict[str, Any]]:
        """Return the live in-memory mapping (insertion ordered)."""
        return self._data

    def get_entry(self, key: str) -> Optional[dict[str, Any]]:
        return self._data.get(key)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    @property
    def dirty(self) -> bool:
        return self._dirty

    def put(self, key: str, partial: dict[str, Any]) -> bool:
        """Merge ``partial`` into the entry for ``key``.

        Non-null fields overwrite, null/missing ones keep their old value.
        Schedules a debounced flush when the entry actually changed.

        Returns:
            True if the stored entry changed.
        """
        existing = self._data.get(key)
        merged = dict(existing or {})
        for field, value in partial.items():
            if value is not None:
                merged[field] = value

        if existing is not None and merged == existing:
            return False

        self._data[key] = merged
        self._dirty = True
        self._schedule_flush()
        return True

    def clear(self):
        """Empty the mapping and write the empty snapshot immediately."""
        logger.warning(f"Clearing all {len(self._data)} entries from {self.path}")
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = None
        self._data.clear()
        self._dirty = True
        self.flush()

    # ── Persistence ───────────────────────────────────────────

    def flush(self) -> bool:
        """Write the full mapping to disk, keeping the previous file as backup.

        Returns:
            True on success. Failures are logged and leave the store dirty.
        """
        try:
            self._ensure_dir()
            if os.path.exists(self.path):
                shutil.copyfile(self.path, self.backup_path)

            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            return False

        self._dirty = False
        logger.debug(f"Saved {len(self._data)} entries to {self.path}")
        return True

    def file_info(self) -> dict:
        """Path, existence, size and mtime of the primary and backup files."""
        info = {}
        for label, path in (("main_file", self.path), ("backup_file", self.backup_path)):
            entry: dict[str, Any] = {"path": path, "exists": os.path.exists(path)}
            if entry["exists"]:
                try:
                    st = os.stat(path)
                    entry["size"] = st.st_size
                    entry["modified"] = st.st_mtime
                except OSError as e:
                    logger.error(f"Error getting file stats for {path}: {e}")
            info[label] = entry
        info["entry_count"] = len(self._data)
        return info

    # ── Internal ───────────────────────────────────────────────

    def _schedule_flush(self):
        """Cancel the pending timer (if any) and start a new one."""
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
        try:
            self._save_task = asyncio.get_running_loop().create_task(self._flush_later())
        except RuntimeError:
            # No event loop: the change stays dirty until flush()/shutdown()
            self._save_task = None

    async def _flush_later(self):
        try:
            await asyncio.sleep(self.save_delay)
        except asyncio.CancelledError:
            return
        self._save_task = None
        self.flush()

    def _ensure_dir(self):
        directory = os.path.dirname(self.path)
        if directory and not os.path.isdir(directory):
            try:
                os.makedirs(directory, exist_ok=True)
                logger.info(f"Created data directory {directory}")
            except OSError as e:
                logger.error(f"Failed to create {directory}: {e}")

    @staticmethod
    def _read(path: str) -> dict[str, dict[str, Any]]:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        bad = [key for key, value in data.items() if not isinstance(value, dict)]
        if bad:
            logger.warning(f"Dropping {len(bad)} malformed entries from {path}: {', '.join(bad[:5])}")
            for key in bad:
                del data[key]
        return data
