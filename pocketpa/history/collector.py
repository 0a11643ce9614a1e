"""Live history collector.

WhatsApp only lets us see messages that arrive while we are connected (plus
whatever history sync pushes as ``append`` batches), so the collector keeps
a bounded buffer per group chat. When a command asks for history and the
cache has nothing fresh, the buffer is snapshotted into the cache.
"""

import logging
from collections import deque
from datetime import datetime
from typing import Optional

from ..contacts.directory import is_group
from ..transport import messages as wa
from .store import NO_HISTORY_PERIOD, ConversationHistoryRecord, HistoryMessage, HistoryStore

logger = logging.getLogger("pocketpa.history")

DEFAULT_BUFFER_SIZE = 500


def format_message(message: dict) -> Optional[HistoryMessage]:
    """Convert a raw message into a history entry (None if it has no chat)."""
    key = message.get("key") or {}
    if not key.get("remoteJid"):
        return None

    kind = wa.message_kind(message)
    text = wa.extract_text(message)
    if kind == "media":
        content = text or f"[{wa.media_type(message)}]"
    elif kind == "system":
        content = text or "[system message]"
    else:
        content = text or ""

    return HistoryMessage(
        timestamp=wa.timestamp_iso(message),
        sender=wa.sender_of(message) or "",
        content=content,
        kind=kind,
        message_id=key.get("id"),
    )


def describe_period(messages: list[HistoryMessage]) -> str:
    """``"2024-06-10 09:15 → 2024-06-10 17:40"`` for the first and last message."""
    if not messages:
        return NO_HISTORY_PERIOD

    def short(ts: str) -> str:
        try:
            return datetime.fromisoformat(ts).strftime("%Y-%m-%d %H:%M")
        except ValueError:
            return ts

    first, last = short(messages[0].timestamp), short(messages[-1].timestamp)
    if first == last:
        return first
    return f"{first} → {last}"


class HistoryCollector:
    """Per-group ring buffers fed by ``messages.upsert``."""

    def __init__(self, store: HistoryStore, max_messages: int = DEFAULT_BUFFER_SIZE):
        self.store = store
        self.max_messages = max_messages
        self._buffers: dict[str, deque[HistoryMessage]] = {}
        self._seen_ids: dict[str, set[str]] = {}

    def add(self, message: dict) -> bool:
        """Buffer one group message. Returns True if it was kept."""
        chat = (message.get("key") or {}).get("remoteJid")
        if not chat or not is_group(chat):
            return False

        entry = format_message(message)
        if entry is None:
            return False

        seen = self._seen_ids.setdefault(chat, set())
        if entry.message_id:
            if entry.message_id in seen:
                return False
            seen.add(entry.message_id)

        buffer = self._buffers.get(chat)
        if buffer is None:
            buffer = self._buffers[chat] = deque(maxlen=self.max_messages)
        if len(buffer) == buffer.maxlen and buffer[0].message_id:
            seen.discard(buffer[0].message_id)
        buffer.append(entry)
        return True

    async def on_messages_upsert(self, payload: dict):
        """Event handler: both live (``notify``) and history (``append``) batches."""
        batch = payload.get("messages") or []
        kept = sum(1 for m in batch if self.add(m))
        if kept and payload.get("type") == "append":
            logger.info(f"Collected {kept} historical message(s) from sync batch")

    def buffered(self, conversation_id: str) -> list[HistoryMessage]:
        return list(self._buffers.get(conversation_id, ()))

    def tracked(self) -> list[str]:
        return list(self._buffers.keys())

    def get_history(self, conversation_id: str, display_name: str) -> ConversationHistoryRecord:
        """Cached history if fresh, otherwise a new snapshot of the buffer.

        An empty buffer yields an empty record that is not cached, so the
        next request can pick up messages collected in the meantime.
        """
        cached = self.store.load(conversation_id)
        if cached is not None:
            logger.info(f"Using cached history for {display_name} ({cached.message_count} messages)")
            return cached

        messages = self.buffered(conversation_id)
        record = ConversationHistoryRecord(
            conversation_id=conversation_id,
            display_name=display_name,
            messages=messages,
            coverage_period=describe_period(messages),
        )
        if not messages:
            logger.info(f"No history available for {display_name} ({conversation_id})")
            record.captured_at = self.store.store.now_ms()
            return record

        saved = self.store.save(record)
        return saved or record
