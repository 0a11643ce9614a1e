"""PocketPA application — builds the components and wires them to events."""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

from ..ai.provider import AIProvider
from ..config import PocketSettings
from ..contacts.directory import ContactDirectory, is_group
from ..contacts.resolver import EntityResolver
from ..groups.registry import GroupRegistry
from ..history.collector import HistoryCollector
from ..history.store import HistoryStore
from ..storage.kv_cache import JsonKVCache
from ..storage.snapshots import GroupsSnapshotFormat, HistorySnapshotFormat, SnapshotStore
from ..transport import events as ev
from ..transport.base import ExistenceResult, WhatsAppTransport, with_timeout
from .assistant import PersonalAssistant
from .commands import CommandHandler

logger = logging.getLogger("pocketpa.app")

HISTORY_INDEX_FILE = "history_index.json"


def build_directory(settings: PocketSettings) -> ContactDirectory:
    return ContactDirectory(JsonKVCache(
        settings.contacts_path,
        settings.contacts_backup_path,
        save_delay=settings.contacts_save_delay,
    ))


def build_groups_store(settings: PocketSettings) -> SnapshotStore:
    groups_dir, groups_file = os.path.split(settings.groups_cache_file)
    return SnapshotStore(
        groups_dir or ".",
        GroupsSnapshotFormat(groups_file),
        ttl_seconds=settings.groups_cache_ttl_hours * 3600,
    )


def build_history_store(settings: PocketSettings) -> HistoryStore:
    return HistoryStore(SnapshotStore(
        settings.history_cache_dir,
        HistorySnapshotFormat(),
        ttl_seconds=settings.history_cache_ttl_hours * 3600,
        index_filename=HISTORY_INDEX_FILE,
    ))


class PocketApp:
    """Owns every component and their lifecycle.

    Usage:
        app = PocketApp(settings, transport, ai)
        await app.start()
        ...
        await app.stop()
    """

    def __init__(
        self,
        settings: PocketSettings,
        transport: WhatsAppTransport,
        ai: Optional[AIProvider] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.transport = transport
        self.ai = ai
        self._sleep = sleep
        self._initial_load: Optional[asyncio.Task] = None
        self._started = False

        self.directory = build_directory(settings)
        self.resolver = EntityResolver(self.directory, probe=self._probe_number)

        self.groups_store = build_groups_store(settings)
        self.registry = GroupRegistry(
            transport,
            self.groups_store,
            directory=self.directory,
            call_timeout=settings.external_call_timeout,
            sleep=sleep,
            base_delay=settings.refresh_base_delay,
            step_delay=settings.refresh_step_delay,
            max_retries=settings.refresh_max_retries,
            cooldown=settings.refresh_cooldown,
        )

        self.history = build_history_store(settings)
        self.collector = HistoryCollector(self.history, max_messages=settings.history_buffer_size)

        ai_for_chat = ai if settings.ai_enabled else None
        self.assistant = PersonalAssistant(
            transport,
            ai,
            self.resolver,
            ai_enabled=settings.ai_enabled,
            keyword_prefixes=tuple(settings.keyword_prefixes),
            voice_keyword=settings.voice_keyword,
            pa_group_jid=settings.pa_group_jid,
            reply_prefix=settings.reply_prefix,
            transcription_language=settings.transcription_language,
            instruction=settings.system_prompt or None,
        )
        self.commands = CommandHandler(
            transport,
            self.registry,
            self.collector,
            directory=self.directory,
            ai=ai_for_chat,
            ai_enabled=settings.ai_enabled,
        )

    # ── Lifecycle ──────────────────────────────────────────────

    def register_handlers(self):
        hub = self.transport.events
        hub.on(ev.CONNECTION_UPDATE, self.on_connection_update)
        hub.on(ev.MESSAGES_UPSERT, self.on_messages_upsert)
        hub.on(ev.MESSAGES_UPSERT, self.collector.on_messages_upsert)
        hub.on(ev.CONTACTS_UPSERT, self.on_contacts)
        hub.on(ev.CONTACTS_UPDATE, self.on_contacts)
        hub.on(ev.CHATS_UPSERT, self.on_chats_upsert)
        hub.on(ev.GROUPS_UPDATE, self.registry.on_groups_update)
        hub.on(ev.GROUP_PARTICIPANTS_UPDATE, self.registry.on_participants_update)

    async def start(self):
        self.directory.load()
        purged = self.history.purge_expired()
        if purged:
            logger.info(f"Removed {purged} expired history cache file(s)")

        self.register_handlers()
        await self.transport.start()
        self._started = True
        logger.info(f"{self.settings.bot_name} started (AI {'enabled' if self.settings.ai_enabled else 'disabled'})")

    async def stop(self):
        if self._initial_load and not self._initial_load.done():
            self._initial_load.cancel()
            try:
                await self._initial_load
            except asyncio.CancelledError:
                pass
        self._initial_load = None

        await self.registry.stop()
        if self._started:
            await self.transport.stop()
            self._started = False
        await self.directory.shutdown()
        logger.info(f"{self.settings.bot_name} stopped.")

    # ── Helpers ───────────────────────────────────────────────

    async def _probe_number(self, jid: str) -> ExistenceResult:
        return await with_timeout(
            self.transport.on_whatsapp(jid), self.settings.external_call_timeout, "on_whatsapp",
        )

    async def load_groups(self):
        """Initial group load; feeds group names into the contact directory."""
        await self._sleep(self.settings.initial_groups_delay)
        logger.info("Loading groups...")
        groups = await self.registry.get_all()
        for group in groups:
            self.directory.observe_group(group.identifier, group.display_name)
        stats = self.directory.stats()
        logger.info(
            f"Groups loaded: {len(groups)} groups, {stats['individuals']} individual contacts "
            f"({stats['individuals_with_names']} with names)"
        )

    # ── Event handlers ────────────────────────────────────────

    async def on_connection_update(self, update: dict):
        if not isinstance(update, dict) or update.get("connection") != "open":
            return
        logger.info(f"WhatsApp connection open (me: {self.transport.own_id})")
        if self._initial_load is None or self._initial_load.done():
            self._initial_load = asyncio.create_task(self.load_groups())

    async def on_messages_upsert(self, payload: dict):
        batch = payload.get("messages") or []
        live = payload.get("type") == "notify"

        for message in batch:
            self.directory.observe_message(message)
            if not live:
                continue
            if await self.commands.handle(message):
                continue
            await self.assistant.handle_message(message)

    async def on_contacts(self, contacts: list):
        self.directory.observe_contacts(contacts or [])

    async def on_chats_upsert(self, chats: list):
        for chat in chats or []:
            jid = chat.get("id")
            name = chat.get("name")
            if jid and name and is_group(jid):
                self.directory.upsert(jid, display_name=name, notify_name=name)
