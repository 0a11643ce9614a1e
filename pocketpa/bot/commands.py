"""Slash commands: groups and history.

    /groups                  list cached group names (reconciled)
    /findgroup <name>        details of one group
    /cacheinfo               groups cache status with a live count check
    /history [name]          recent messages of a group
    /summary <name>          AI summary of a group's recent messages
    /historyinfo <name>      history cache status for a group
    /cachedhistories         every cached history

Failures never escape a command: the user gets a short error reply.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Optional

from ..ai.provider import AIProvider, Turn
from ..contacts.directory import ContactDirectory, user_part
from ..groups.registry import GroupRegistry
from ..history.collector import HistoryCollector
from ..history.store import ConversationHistoryRecord
from ..transport import messages as wa
from ..transport.base import WhatsAppTransport
from .errors import classify_error

logger = logging.getLogger("pocketpa.commands")

GENERIC_ERROR = "❌ An error occurred while processing your command. Please try again later."
HISTORY_LIST_LIMIT = 20
HISTORY_SHOW_LAST = 15
SUMMARY_MAX_MESSAGES = 200

SUMMARY_INSTRUCTION = (
    "You summarize WhatsApp group conversations. Write a short plain-text summary: "
    "main topics, decisions, open questions and who was most active. No JSON, no markdown headings."
)


def format_age(age_seconds: float) -> str:
    """``"No cache"``, ``"42 minutes"`` or ``"5 hours"``."""
    if age_seconds == float("inf"):
        return "No cache"
    hours = age_seconds / 3600
    if hours < 1:
        return f"{round(hours * 60)} minutes"
    return f"{round(hours)} hours"


def _format_hm(hours: float) -> str:
    whole = int(hours)
    minutes = int((hours - whole) * 60)
    return f"{whole}h {minutes}m"


def _time_of(ts: str) -> str:
    try:
        return datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except ValueError:
        return ts


class CommandHandler:
    """Parses and answers slash commands in any chat."""

    COMMANDS = ("/groups", "/findgroup", "/cacheinfo", "/history", "/summary", "/historyinfo", "/cachedhistories")

    def __init__(
        self,
        transport: WhatsAppTransport,
        registry: GroupRegistry,
        collector: HistoryCollector,
        directory: Optional[ContactDirectory] = None,
        ai: Optional[AIProvider] = None,
        ai_enabled: bool = False,
    ):
        self.transport = transport
        self.registry = registry
        self.collector = collector
        self.history = collector.store
        self.directory = directory
        self.ai = ai
        self.ai_enabled = ai_enabled

    # ── Dispatch ──────────────────────────────────────────────

    @classmethod
    def parse(cls, text: str) -> Optional[tuple[str, str]]:
        """``"/findgroup Family Chat"`` → ``("/findgroup", "Family Chat")``."""
        text = (text or "").strip()
        if not text.startswith("/"):
            return None
        command, _, args = text.partition(" ")
        if command not in cls.COMMANDS:
            return None
        return command, args.strip()

    async def handle(self, message: dict) -> bool:
        """Answer ``message`` if it is a command. Returns True if it was one."""
        chat = (message.get("key") or {}).get("remoteJid")
        if not chat or not message.get("message"):
            return False

        parsed = self.parse(wa.extract_text(message) or "")
        if parsed is None:
            return False
        command, args = parsed
        logger.info(f"Command {command} from {chat}")

        handlers = {
            "/groups": self.cmd_groups,
            "/findgroup": self.cmd_findgroup,
            "/cacheinfo": self.cmd_cacheinfo,
            "/history": self.cmd_history,
            "/summary": self.cmd_summary,
            "/historyinfo": self.cmd_historyinfo,
            "/cachedhistories": self.cmd_cachedhistories,
        }
        try:
            reply = await handlers[command](args)
        except Exception as e:
            logger.error(f"Command {command} failed: {e}", exc_info=True)
            reply = GENERIC_ERROR

        try:
            await self.transport.send_text(chat, reply)
        except Exception as e:
            logger.error(f"Failed to send {command} reply to {chat}: {classify_error(e)} ({e})")
        return True

    async def _ensure_groups(self):
        if not self.registry.count():
            await self.registry.get_all()

    # ── Groups ────────────────────────────────────────────────

    async def cmd_groups(self, args: str) -> str:
        groups = await self.registry.get_all()
        names = [g.display_name for g in groups]
        if not names:
            return "No groups found. Make sure you are part of some WhatsApp groups."
        listing = "\n".join(f"{i}. {name}" for i, name in enumerate(names, 1))
        return f"📱 Available Groups ({len(names)}):\n\n{listing}"

    async def cmd_findgroup(self, args: str) -> str:
        if not args:
            return "Usage: /findgroup <group_name>\n\nExample: /findgroup Family Chat"

        await self._ensure_groups()
        group = self.registry.find_by_name(args)
        if group is None:
            return f'❌ Group "{args}" not found.\n\nUse /groups to see all available groups.'

        text = (
            f"✅ Found Group:\n\n📱 Name: {group.display_name}\n"
            f"👥 Participants: {group.member_count}\n🆔 ID: {group.identifier}"
        )
        if group.description:
            text += f"\n📝 Description: {group.description}"
        return text

    async def cmd_cacheinfo(self, args: str) -> str:
        info = await self.registry.cache_info(probe=True)

        text = (
            f"📊 Groups Cache Info:\n\n💾 Cache exists: {'Yes' if info.exists else 'No'}\n"
            f"⏰ Cache age: {format_age(info.age_seconds)}\n📱 Cached groups: {info.cached_count}"
        )
        if info.live_count is not None:
            text += f"\n🔄 Current groups: {info.live_count}"
            if info.mismatch:
                diff = info.live_count - info.cached_count
                text += "\n⚠️ Count mismatch detected!"
                text += f"\n📈 Difference: {'+' if diff > 0 else ''}{diff}"
                text += "\n🔄 Cache will auto-update on next /groups command"
            else:
                text += "\n✅ Cache is up to date"

        ttl_hours = round(self.registry.store.ttl_seconds / 3600)
        text += (
            f"\n\nCache auto-refreshes after {ttl_hours} hours" if info.exists
            else "\n\nCache will be created on next group fetch"
        )
        return text

    # ── History ───────────────────────────────────────────────

    async def _history_for(self, name: str) -> Optional[ConversationHistoryRecord]:
        await self._ensure_groups()
        group = self.registry.find_by_name(name)
        if group is None:
            return None
        return self.collector.get_history(group.identifier, group.display_name)

    def _sender_name(self, jid: str) -> str:
        if self.directory is not None and jid:
            return self.directory.name_of(jid)
        return user_part(jid)[-4:]

    async def cmd_history(self, args: str) -> str:
        if not args:
            await self._ensure_groups()
            names = self.registry.list_names()
            text = "📋 Available groups for history:\n\n"
            if not names:
                return text + "No groups available. Use /groups to see all groups."
            text += "".join(f"{i}. {name}\n" for i, name in enumerate(names[:HISTORY_LIST_LIMIT], 1))
            if len(names) > HISTORY_LIST_LIMIT:
                text += f"\n... and {len(names) - HISTORY_LIST_LIMIT} more groups"
            return text + "\n\n💡 Usage: /history <group_name>"

        record = await self._history_for(args)
        if record is None:
            return f'❌ Failed to fetch history for "{args}". Please check the group name and try again.'

        fetched = datetime.fromtimestamp(record.captured_at / 1000).strftime("%Y-%m-%d %H:%M")
        text = (
            f'📜 Message History for "{record.display_name}"\n'
            f"🔢 Total Messages: {record.message_count}\n"
            f"📅 Fetched: {fetched}\n"
            f"🕒 Period: {record.coverage_period}\n\n"
        )
        if record.message_count == 0:
            return text + (
                "❌ No message history available.\n\n"
                "The bot only sees messages that arrive while it is connected. "
                "Try again after the group has had some activity."
            )

        text += "💬 Recent Messages:\n\n"
        recent = record.messages[-HISTORY_SHOW_LAST:]
        for i, msg in enumerate(recent, 1):
            content = msg.content if len(msg.content) <= 100 else msg.content[:100] + "..."
            text += f"{i}. [{_time_of(msg.timestamp)}] {self._sender_name(msg.sender)}: {content}\n"
        if record.message_count > HISTORY_SHOW_LAST:
            text += f"\n... and {record.message_count - HISTORY_SHOW_LAST} earlier messages"
        return text + f"\n\n💡 Use /summary {record.display_name} for AI analysis"

    async def cmd_summary(self, args: str) -> str:
        if not args:
            return "💡 Usage: /summary <group_name>\n\nExample: /summary Tech Discussion"

        record = await self._history_for(args)
        if record is None:
            return f'❌ Failed to generate summary for "{args}". Please check the group name and try again.'

        kinds = Counter(m.kind for m in record.messages)
        participants = {m.sender for m in record.messages}
        text = (
            f'🤖 AI Summary for "{record.display_name}"\n'
            f"📊 Analysis of {record.message_count} messages\n\n"
            f"👥 Active participants: {len(participants)}\n"
            f"💬 Text messages: {kinds.get('text', 0)}\n"
            f"📎 Media messages: {kinds.get('media', 0)}\n\n"
        )
        if record.message_count == 0:
            return text + "❌ No messages available for analysis yet."
        if not self.ai_enabled or self.ai is None:
            return text + "ℹ️ AI is disabled, only statistics are available."

        transcript = "\n".join(
            f"[{m.timestamp}] {self._sender_name(m.sender)}: {m.content}"
            for m in record.messages[-SUMMARY_MAX_MESSAGES:]
        )
        try:
            summary = await self.ai.complete(
                [Turn(role="user", content=f'Conversation from "{record.display_name}":\n\n{transcript}')],
                instruction=SUMMARY_INSTRUCTION,
            )
        except Exception as e:
            logger.error(f"Summary for {record.display_name} failed: {e}")
            return text + f"⚠️ AI summary unavailable: {classify_error(e)}"
        return text + f"🔮 AI Summary:\n{summary}"

    async def cmd_historyinfo(self, args: str) -> str:
        if not args:
            return "💡 Usage: /historyinfo <group_name>\n\nExample: /historyinfo Tech Discussion"

        await self._ensure_groups()
        group = self.registry.find_by_name(args)
        if group is None:
            return f'❌ Group "{args}" not found.\n\nUse /groups to see all available groups.'

        info = self.history.info(group.identifier)
        text = f'📊 History Cache Info for "{args}":\n\n'
        if not info.exists:
            return text + f"❌ Cache Status: Not Available\n💡 Use /history {args} to fetch and cache history"
        return text + (
            "✅ Cache Status: Available\n"
            f"📅 Last Updated: {_format_hm(info.age_hours)} ago\n"
            f"💬 Message Count: {info.message_count}\n"
            f"🔄 Is Expired: {'Yes' if info.expired else 'No'}"
        )

    async def cmd_cachedhistories(self, args: str) -> str:
        entries = self.history.cached()
        text = "📚 Cached Group Histories:\n\n"
        if not entries:
            return text + (
                "No cached histories available.\n\n"
                "💡 Use /history <group_name> to start caching group histories."
            )
        for i, entry in enumerate(entries, 1):
            text += f"{i}. {entry.display_name or entry.key}\n"
            text += f"   💬 {entry.item_count} messages\n"
            text += f"   ⏰ {int(entry.age_seconds // 3600)}h ago\n\n"
        return text + f"Total: {len(entries)} cached histories"
