"""TTL snapshot store — full, timestamped snapshots with expiry on read.

A snapshot is a whole collection written at once (the groups registry, one
conversation's history) wrapped in an envelope carrying the capture time and
a format version. Reads past the TTL are misses, never errors; so are missing
files, unparsable files and unknown format versions. The caller's answer to a
miss is always "go fetch fresh data".

The on-disk shape is delegated to a SnapshotFormat so existing cache files
(``groups_cache.json``, ``history_cache/*_history.json``) stay readable.
An optional index file maps ``key -> display name, capture time, item count``
so status commands can enumerate snapshots without opening each one.
"""

import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger("pocketpa.storage.snapshots")

FORMAT_VERSION = "1.0"


@dataclass
class SnapshotEnvelope:
    key: str
    captured_at: int            # epoch milliseconds
    payload: list
    format_version: str = FORMAT_VERSION
    display_name: str = ""
    extra: dict = field(default_factory=dict)


@dataclass
class SnapshotInfo:
    """Metadata about a stored snapshot (no payload)."""
    key: str
    display_name: str
    captured_at: int
    age_seconds: float
    item_count: int
    expired: bool


# ════════════════════════════════════════════════════════
# Formats
# ════════════════════════════════════════════════════════

class SnapshotFormat(ABC):
    """Maps envelopes to and from a concrete JSON layout."""

    supported_versions: tuple[str, ...] = (FORMAT_VERSION,)

    @abstractmethod
    def filename(self, key: str) -> str:
        """File name (relative to the store directory) for ``key``."""
        ...

    @abstractmethod
    def encode(self, envelope: SnapshotEnvelope) -> dict:
        ...

    @abstractmethod
    def decode(self, key: str, raw: dict) -> SnapshotEnvelope:
        """Raise KeyError/TypeError/ValueError for malformed input."""
        ...

    def index_entry(self, envelope: SnapshotEnvelope) -> dict:
        return {
            "displayName": envelope.display_name,
            "capturedAt": envelope.captured_at,
            "itemCount": len(envelope.payload),
        }

    def index_fields(self, entry: dict) -> tuple[str, int]:
        """Return (display_name, captured_at) from an index entry."""
        return str(entry.get("displayName", "")), int(entry["capturedAt"])

    def index_count(self, entry: dict) -> Optional[int]:
        """Item count recorded in the index, or None for older entries."""
        count = entry.get("itemCount")
        return count if isinstance(count, int) else None


class GroupsSnapshotFormat(SnapshotFormat):
    """``{"lastUpdated": ms, "groups": [...], "version": "1.0"}`` in one file."""

    def __init__(self, filename: str = "groups_cache.json"):
        self._filename = filename

    def filename(self, key: str) -> str:
        return self._filename

    def encode(self, envelope: SnapshotEnvelope) -> dict:
        return {
            "lastUpdated": envelope.captured_at,
            "groups": envelope.payload,
            "version": envelope.format_version,
        }

    def decode(self, key: str, raw: dict) -> SnapshotEnvelope:
        groups = raw["groups"]
        if not isinstance(groups, list):
            raise TypeError("groups must be a list")
        return SnapshotEnvelope(
            key=key,
            captured_at=int(raw["lastUpdated"]),
            payload=groups,
            format_version=str(raw.get("version", FORMAT_VERSION)),
        )


def sanitize_key(key: str) -> str:
    """Replace every non-alphanumeric character with ``_``."""
    return re.sub(r"[^a-zA-Z0-9]", "_", key)


class HistorySnapshotFormat(SnapshotFormat):
    """One ``<sanitized jid>_history.json`` per conversation.

    Layout: ``{groupJid, groupName, messages, fetchedAt, messageCount,
    period, version}``. Files written before the version field existed are
    read as version 1.0.
    """

    def filename(self, key: str) -> str:
        return f"{sanitize_key(key)}_history.json"

    def encode(self, envelope: SnapshotEnvelope) -> dict:
        return {
            "groupJid": envelope.key,
            "groupName": envelope.display_name,
            "messages": envelope.payload,
            "fetchedAt": envelope.captured_at,
            "messageCount": len(envelope.payload),
            "period": envelope.extra.get("period", ""),
            "version": envelope.format_version,
        }

    def decode(self, key: str, raw: dict) -> SnapshotEnvelope:
        messages = raw["messages"]
        if not isinstance(messages, list):
            raise TypeError("messages must be a list")
        return SnapshotEnvelope(
            key=raw.get("groupJid", key),
            captured_at=int(raw["fetchedAt"]),
            payload=messages,
            format_version=str(raw.get("version", FORMAT_VERSION)),
            display_name=str(raw.get("groupName", "")),
            extra={"period": raw.get("period", "")},
        )

    def index_entry(self, envelope: SnapshotEnvelope) -> dict:
        return {
            "groupName": envelope.display_name,
            "fetchedAt": envelope.captured_at,
            "messageCount": len(envelope.payload),
        }

    def index_fields(self, entry: dict) -> tuple[str, int]:
        return str(entry.get("groupName", "")), int(entry["fetchedAt"])

    def index_count(self, entry: dict) -> Optional[int]:
        count = entry.get("messageCount")
        return count if isinstance(count, int) else None


# ════════════════════════════════════════════════════════
# Store
# ════════════════════════════════════════════════════════

class SnapshotStore:
    """File-per-key snapshot store with a time-to-live.

    Args:
        directory: Where snapshot files (and the index) live.
        fmt: On-disk layout.
        ttl_seconds: Snapshots at least this old are misses.
        index_filename: Optional index file name inside ``directory``.
        clock: Returns the current time in seconds (``time.time``).
    """

    def __init__(
        self,
        directory: str,
        fmt: SnapshotFormat,
        ttl_seconds: float,
        index_filename: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = directory
        self.fmt = fmt
        self.ttl_seconds = ttl_seconds
        self.index_path = os.path.join(directory, index_filename) if index_filename else None
        self._clock = clock
        self._stamps: dict[str, int] = {}   # key -> last known captured_at

    # ── Paths / time ──────────────────────────────────────────

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, self.fmt.filename(key))

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _age_seconds(self, captured_at: int) -> float:
        return (self.now_ms() - captured_at) / 1000.0

    def is_expired(self, captured_at: int) -> bool:
        return self._age_seconds(captured_at) >= self.ttl_seconds

    # ── Write ─────────────────────────────────────────────────

    def save(
        self,
        key: str,
        payload: list,
        display_name: str = "",
        extra: Optional[dict] = None,
    ) -> Optional[SnapshotEnvelope]:
        """Write a new snapshot for ``key`` stamped with the current time.

        Returns:
            The stored envelope, or None if the write failed (logged).
        """
        captured_at = self.now_ms()
        previous = self._stamps.get(key)
        if previous is None:
            previous = self._read_stamp(key)
        if previous is not None and captured_at <= previous:
            captured_at = previous + 1

        envelope = SnapshotEnvelope(
            key=key,
            captured_at=captured_at,
            payload=list(payload),
            display_name=display_name,
            extra=dict(extra or {}),
        )

        path = self.path_for(key)
        try:
            self._write_json(path, self.fmt.encode(envelope))
        except OSError as e:
            logger.error(f"Failed to save snapshot {key} to {path}: {e}")
            return None

        self._stamps[key] = captured_at
        self._update_index(key, envelope)
        logger.info(f"Snapshot saved: {key} ({len(envelope.payload)} items) -> {path}")
        return envelope

    # ── Read ──────────────────────────────────────────────────

    def load(self, key: str, allow_expired: bool = False) -> Optional[SnapshotEnvelope]:
        """Read the snapshot for ``key``.

        Returns None (a miss) when the file is missing, unreadable, of an
        unknown version, or expired (unless ``allow_expired``).
        """
        envelope = self._read(key)
        if envelope is None:
            return None

        if envelope.format_version not in self.fmt.supported_versions:
            logger.info(f"Snapshot {key} has unknown version {envelope.format_version!r}, ignoring")
            return None

        if not allow_expired and self.is_expired(envelope.captured_at):
            age_h = self._age_seconds(envelope.captured_at) / 3600
            logger.info(f"Snapshot {key} expired ({age_h:.1f}h old, ttl {self.ttl_seconds / 3600:.1f}h)")
            return None

        logger.debug(f"Snapshot loaded: {key} ({len(envelope.payload)} items)")
        return envelope

    def exists(self, key: str) -> bool:
        return os.path.exists(self.path_for(key))

    def age_of(self, key: str) -> float:
        """Age of the snapshot in seconds, ``inf`` if there is none."""
        if not self.exists(key):
            return float("inf")
        stamp = self._stamps.get(key)
        if stamp is None:
            stamp = self._read_stamp(key)
        if stamp is None:
            return float("inf")
        return self._age_seconds(stamp)

    def info(self, key: str) -> Optional[SnapshotInfo]:
        """Metadata for one snapshot (reads the file for the item count)."""
        envelope = self._read(key)
        if envelope is None:
            return None
        return SnapshotInfo(
            key=envelope.key,
            display_name=envelope.display_name,
            captured_at=envelope.captured_at,
            age_seconds=self._age_seconds(envelope.captured_at),
            item_count=len(envelope.payload),
            expired=self.is_expired(envelope.captured_at),
        )

    def entries(self) -> list[SnapshotInfo]:
        """All indexed snapshots whose files still exist, youngest first."""
        results = []
        for key, entry in self._load_index().items():
            if not os.path.exists(self.path_for(key)):
                continue
            try:
                display_name, captured_at = self.fmt.index_fields(entry)
                count = self.fmt.index_count(entry)
            except (AttributeError, KeyError, TypeError, ValueError):
                count = None
            if count is None:
                # Entry predates counts in the index
                info = self.info(key)
                if info is not None:
                    results.append(info)
                continue
            results.append(SnapshotInfo(
                key=key,
                display_name=display_name,
                captured_at=captured_at,
                age_seconds=self._age_seconds(captured_at),
                item_count=count,
                expired=self.is_expired(captured_at),
            ))
        results.sort(key=lambda i: i.age_seconds)
        return results

    # ── Delete ────────────────────────────────────────────────

    def clear(self, key: str) -> bool:
        """Delete one snapshot and its index entry."""
        self._stamps.pop(key, None)
        removed = False
        try:
            os.unlink(self.path_for(key))
            removed = True
            logger.info(f"Snapshot cleared: {key}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to clear snapshot {key}: {e}")
        self._remove_from_index([key])
        return removed

    def purge_expired(self) -> int:
        """Delete every indexed snapshot past its TTL.

        Returns:
            Number of snapshot files removed.
        """
        index = self._load_index()
        expired_keys = []
        for key, entry in index.items():
            try:
                _, captured_at = self.fmt.index_fields(entry)
            except (AttributeError, KeyError, TypeError, ValueError):
                expired_keys.append(key)
                continue
            if self.is_expired(captured_at):
                expired_keys.append(key)

        removed = 0
        for key in expired_keys:
            self._stamps.pop(key, None)
            try:
                os.unlink(self.path_for(key))
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete expired snapshot {key}: {e}")

        self._remove_from_index(expired_keys)
        if removed:
            logger.info(f"Purged {removed} expired snapshot(s) from {self.directory}")
        return removed

    # ── Internal ───────────────────────────────────────────────

    def _read(self, key: str) -> Optional[SnapshotEnvelope]:
        path = self.path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise TypeError("snapshot is not a JSON object")
            envelope = self.fmt.decode(key, raw)
        except FileNotFoundError:
            logger.debug(f"No snapshot for {key} at {path}")
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to read snapshot {key} from {path}: {e}")
            return None
        self._stamps[key] = envelope.captured_at
        return envelope

    def _read_stamp(self, key: str) -> Optional[int]:
        envelope = self._read(key)
        return envelope.captured_at if envelope else None

    def _write_json(self, path: str, data: Any):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    def _load_index(self) -> dict[str, dict]:
        if not self.index_path:
            return {}
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                index = json.load(f)
            return index if isinstance(index, dict) else {}
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.debug(f"Index {self.index_path} unreadable: {e}")
            return {}

    def _update_index(self, key: str, envelope: SnapshotEnvelope):
        if not self.index_path:
            return
        index = self._load_index()
        index[key] = self.fmt.index_entry(envelope)
        try:
            self._write_json(self.index_path, index)
        except OSError as e:
            logger.error(f"Failed to update index {self.index_path}: {e}")

    def _remove_from_index(self, keys: list[str]):
        if not self.index_path or not keys:
            return
        index = self._load_index()
        changed = False
        for key in keys:
            if key in index:
                del index[key]
                changed = True
        if not changed:
            return
        try:
            self._write_json(self.index_path, index)
        except OSError as e:
            logger.error(f"Failed to update index {self.index_path}: {e}")
