"""Per-group message history: TTL cache plus a live collector."""

from .collector import HistoryCollector, describe_period, format_message
from .store import ConversationHistoryRecord, HistoryCacheInfo, HistoryMessage, HistoryStore

__all__ = [
    "ConversationHistoryRecord",
    "HistoryCacheInfo",
    "HistoryCollector",
    "HistoryMessage",
    "HistoryStore",
    "describe_period",
    "format_message",
]
