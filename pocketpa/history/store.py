"""Conversation history cache — one snapshot file per group, 6h TTL."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..storage.snapshots import SnapshotStore

logger = logging.getLogger("pocketpa.history.store")

NO_HISTORY_PERIOD = "No historical messages available"


@dataclass
class HistoryMessage:
    timestamp: str              # ISO-8601
    sender: str
    content: str
    kind: str = "text"          # 'text', 'media', 'system'
    message_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "sender": self.sender,
            "content": self.content,
            "type": self.kind,
        }
        if self.message_id:
            data["messageId"] = self.message_id
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HistoryMessage":
        return cls(
            timestamp=str(raw.get("timestamp", "")),
            sender=str(raw.get("sender", "")),
            content=str(raw.get("content", "")),
            kind=raw.get("type", "text"),
            message_id=raw.get("messageId"),
        )


@dataclass
class ConversationHistoryRecord:
    conversation_id: str
    display_name: str
    messages: list[HistoryMessage] = field(default_factory=list)
    captured_at: int = 0        # epoch ms
    coverage_period: str = NO_HISTORY_PERIOD

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass
class HistoryCacheInfo:
    exists: bool
    age_hours: float
    message_count: int = 0
    expired: bool = True
    captured_at: Optional[int] = None


class HistoryStore:
    """Typed view over the history SnapshotStore."""

    def __init__(self, store: SnapshotStore):
        self.store = store

    @property
    def ttl_hours(self) -> float:
        return self.store.ttl_seconds / 3600

    def save(self, record: ConversationHistoryRecord) -> Optional[ConversationHistoryRecord]:
        envelope = self.store.save(
            record.conversation_id,
            [m.to_dict() for m in record.messages],
            display_name=record.display_name,
            extra={"period": record.coverage_period},
        )
        if envelope is None:
            return None
        record.captured_at = envelope.captured_at
        logger.info(f"History cached for {record.display_name}: {record.message_count} messages")
        return record

    def load(self, conversation_id: str) -> Optional[ConversationHistoryRecord]:
        envelope = self.store.load(conversation_id)
        if envelope is None:
            return None
        return ConversationHistoryRecord(
            conversation_id=envelope.key,
            display_name=envelope.display_name,
            messages=[HistoryMessage.from_dict(m) for m in envelope.payload if isinstance(m, dict)],
            captured_at=envelope.captured_at,
            coverage_period=envelope.extra.get("period") or NO_HISTORY_PERIOD,
        )

    def info(self, conversation_id: str) -> HistoryCacheInfo:
        snapshot = self.store.info(conversation_id)
        if snapshot is None:
            return HistoryCacheInfo(exists=False, age_hours=float("inf"))
        return HistoryCacheInfo(
            exists=True,
            age_hours=snapshot.age_seconds / 3600,
            message_count=snapshot.item_count,
            expired=snapshot.expired,
            captured_at=snapshot.captured_at,
        )

    def cached(self):
        """SnapshotInfo for every indexed history, youngest first."""
        return self.store.entries()

    def purge_expired(self) -> int:
        return self.store.purge_expired()
