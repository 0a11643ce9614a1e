"""Contact directory — every person and group the bot has seen, by JID.

Backed by the persistent KV cache (``data/contacts.json``). Records are
created on first observation and refined as better names arrive from
message push names, contact sync events and group metadata. Only real
WhatsApp identifiers are kept: individuals (``@s.whatsapp.net``) and groups
(``@g.us``).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..storage.kv_cache import JsonKVCache

logger = logging.getLogger("pocketpa.contacts")

INDIVIDUAL_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"


def user_part(jid: str) -> str:
    """``"1555:3@s.whatsapp.net"`` → ``"1555"``."""
    return jid.split("@", 1)[0].split(":", 1)[0]


def is_individual(jid: str) -> bool:
    return jid.endswith(INDIVIDUAL_SUFFIX)


def is_group(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX)


def is_storable(jid: Optional[str]) -> bool:
    return bool(jid) and (is_individual(jid) or is_group(jid))


@dataclass
class ContactRecord:
    identifier: str
    display_name: Optional[str] = None
    notify_name: Optional[str] = None
    raw_push_name: Optional[str] = None

    @property
    def best_name(self) -> str:
        """displayName > notifyName > rawPushName > phone/user part."""
        return (
            self.display_name
            or self.notify_name
            or self.raw_push_name
            or user_part(self.identifier)
        )

    @property
    def has_name(self) -> bool:
        return bool(self.display_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.display_name,
            "notify": self.notify_name,
            "pushName": self.raw_push_name,
        }

    @classmethod
    def from_dict(cls, identifier: str, raw: dict[str, Any]) -> "ContactRecord":
        return cls(
            identifier=identifier,
            display_name=raw.get("name") or None,
            notify_name=raw.get("notify") or None,
            raw_push_name=raw.get("pushName") or None,
        )


class ContactDirectory:
    """Owned contact store with an explicit lifecycle.

    Usage:
        directory = ContactDirectory(JsonKVCache(path, backup))
        directory.load()
        directory.observe_message(msg)
        ...
        await directory.shutdown()
    """

    def __init__(self, cache: JsonKVCache):
        self.cache = cache

    # ── Lifecycle ──────────────────────────────────────────────

    def load(self) -> int:
        self.cache.load()
        logger.info(f"Contact directory ready: {len(self.cache)} contacts")
        return len(self.cache)

    async def shutdown(self):
        await self.cache.shutdown()

    # ── Queries ───────────────────────────────────────────────

    def get(self, jid: str) -> Optional[ContactRecord]:
        raw = self.cache.get_entry(jid)
        if raw is None:
            return None
        return ContactRecord.from_dict(jid, raw)

    def records(self) -> list[ContactRecord]:
        """All records in insertion order."""
        return [ContactRecord.from_dict(jid, raw) for jid, raw in self.cache.get().items()]

    def name_of(self, jid: str) -> str:
        record = self.get(jid)
        return record.best_name if record else user_part(jid)

    def __len__(self) -> int:
        return len(self.cache)

    def stats(self) -> dict[str, int]:
        records = self.records()
        individuals = [r for r in records if is_individual(r.identifier)]
        return {
            "total": len(records),
            "individuals": len(individuals),
            "groups": sum(1 for r in records if is_group(r.identifier)),
            "with_names": sum(1 for r in records if r.has_name),
            "individuals_with_names": sum(1 for r in individuals if r.has_name),
        }

    def file_info(self) -> dict:
        return self.cache.file_info()

    # ── Mutation ──────────────────────────────────────────────

    def upsert(
        self,
        jid: str,
        display_name: Optional[str] = None,
        notify_name: Optional[str] = None,
        raw_push_name: Optional[str] = None,
    ) -> bool:
        """Create or refine a record. Returns True if anything changed."""
        if not is_storable(jid):
            logger.debug(f"Skipping non-storable identifier {jid}")
            return False

        changed = self.cache.put(jid, {
            "name": display_name or None,
            "notify": notify_name or None,
            "pushName": raw_push_name or None,
        })
        if changed:
            logger.debug(f"Contact updated: {jid} -> {display_name or notify_name or raw_push_name}")
        return changed

    def clear(self):
        self.cache.clear()
        logger.warning("Contact directory cleared")

    # ── Observation from events ───────────────────────────────

    def observe_message(self, message: dict) -> Optional[str]:
        """Learn the sender's name from an inbound message.

        Direct chats record the chat JID; group chats record
        ``key.participant``. Messages sent by us are ignored.

        Returns:
            The JID that was observed, or None.
        """
        key = message.get("key") or {}
        chat = key.get("remoteJid")
        if not chat or key.get("fromMe"):
            return None

        if is_individual(chat):
            sender = chat
        elif is_group(chat) and key.get("participant"):
            sender = key["participant"]
        else:
            return None

        if not is_individual(sender):
            return None

        push_name = message.get("pushName") or None
        existing = self.get(sender)
        best = push_name or (existing.display_name or existing.raw_push_name if existing else None)

        self.upsert(
            sender,
            display_name=best,
            notify_name=best or user_part(sender),
            raw_push_name=push_name,
        )
        return sender

    def observe_contacts(self, contacts: list[dict]) -> int:
        """Apply a ``contacts.upsert``/``contacts.update`` batch."""
        updated = 0
        for contact in contacts:
            jid = contact.get("id")
            name = contact.get("name") or contact.get("verifiedName")
            notify = contact.get("notify")
            if not jid or not (name or notify):
                continue
            if self.upsert(jid, display_name=name, notify_name=notify):
                updated += 1
        if updated:
            logger.info(f"Contact sync: {updated} of {len(contacts)} contacts updated")
        return updated

    def observe_group(self, jid: str, subject: Optional[str], participants: Optional[list] = None) -> int:
        """Store a group (by subject) and its participants.

        Returns:
            Number of individual participants seen.
        """
        if subject:
            self.upsert(jid, display_name=subject, notify_name=subject)

        seen = 0
        for participant in participants or []:
            pid = participant.get("id") if isinstance(participant, dict) else None
            if not pid or not is_individual(pid):
                continue
            name = participant.get("notify") or participant.get("name")
            self.upsert(pid, display_name=name, notify_name=name or user_part(pid))
            seen += 1
        return seen
