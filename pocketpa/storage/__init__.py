"""Storage primitives — debounced JSON key-value cache and TTL snapshots."""

from .kv_cache import JsonKVCache
from .snapshots import (
    GroupsSnapshotFormat,
    HistorySnapshotFormat,
    SnapshotEnvelope,
    SnapshotInfo,
    SnapshotStore,
)

__all__ = [
    "JsonKVCache",
    "GroupsSnapshotFormat",
    "HistorySnapshotFormat",
    "SnapshotEnvelope",
    "SnapshotInfo",
    "SnapshotStore",
]
