"""Groups registry with TTL caching and a throttled metadata refresh queue."""

from .refresh_queue import DrainResult, RefreshQueue, RetryQueueEntry
from .registry import CacheInfo, CacheState, GroupRegistry, GroupSnapshot

__all__ = [
    "CacheInfo",
    "CacheState",
    "DrainResult",
    "GroupRegistry",
    "GroupSnapshot",
    "RefreshQueue",
    "RetryQueueEntry",
]
