"""Group registry — which groups we are in, cached for 24h.

Reads go through a reconciliation step that decides between the cached
snapshot and a full refetch:

    COLD_START ─(no valid snapshot)─────────────────────────► refresh
    COLD_START ─(snapshot on disk)─► LOADED
    LOADED ─► VALIDATED ─(probe count != cached)─► STALE ─► REFRESHING ─► LOADED
                        └(probe count == cached)─► FRESH ─► LOADED

The probe is a cheap group count. If the probe itself fails the cached
projection is served. If a refresh fails (rate limit, timeout, bridge
down) the last snapshot is served even when expired, then whatever is in
memory. Nothing here raises to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..contacts.directory import ContactDirectory, user_part
from ..storage.snapshots import SnapshotStore
from ..transport.base import GroupMetadata, WhatsAppTransport, with_timeout
from .refresh_queue import RefreshQueue

logger = logging.getLogger("pocketpa.groups")

SNAPSHOT_KEY = "groups"
UNKNOWN_GROUP = "Unknown Group"

GROUPS_UPDATE_DRAIN_DELAY = 2.0
PARTICIPANTS_DRAIN_DELAY = 3.0


class CacheState(Enum):
    COLD_START = "cold_start"
    LOADED = "loaded"
    VALIDATED = "validated"
    STALE = "stale"
    REFRESHING = "refreshing"
    FRESH = "fresh"


@dataclass
class GroupSnapshot:
    identifier: str
    display_name: str
    member_count: int = 0
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jid": self.identifier, "name": self.display_name}
        if self.description is not None:
            data["description"] = self.description
        data["participantCount"] = self.member_count
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "GroupSnapshot":
        return cls(
            identifier=raw["jid"],
            display_name=raw.get("name") or UNKNOWN_GROUP,
            member_count=max(0, int(raw.get("participantCount") or 0)),
            description=raw.get("description"),
        )

    @classmethod
    def from_metadata(cls, meta: GroupMetadata) -> "GroupSnapshot":
        return cls(
            identifier=meta.id,
            display_name=meta.subject or UNKNOWN_GROUP,
            member_count=meta.participant_count,
            description=meta.desc,
        )


@dataclass
class CacheInfo:
    exists: bool
    age_seconds: float
    cached_count: int
    live_count: Optional[int] = None
    mismatch: Optional[bool] = None


class GroupRegistry:
    """Owned in-memory projection of our groups, backed by a snapshot store.

    Args:
        transport: WhatsApp transport (probe, full fetch, per-group metadata).
        store: Snapshot store holding the ``groups`` snapshot.
        directory: Optional contact directory fed with group subjects and
            participants on every full refresh.
        call_timeout: Overall timeout for each transport call.
        queue_options: Extra keyword arguments for the RefreshQueue.
    """

    def __init__(
        self,
        transport: WhatsAppTransport,
        store: SnapshotStore,
        directory: Optional[ContactDirectory] = None,
        call_timeout: Optional[float] = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **queue_options,
    ):
        self.transport = transport
        self.store = store
        self.directory = directory
        self.call_timeout = call_timeout
        self.state = CacheState.COLD_START
        self.refresh_count = 0

        self._groups: dict[str, GroupSnapshot] = {}
        self._captured_at: Optional[int] = None

        self.queue = RefreshQueue(
            fetch=self.transport.group_metadata,
            on_success=self._apply_metadata,
            timeout=call_timeout,
            sleep=sleep,
            **queue_options,
        )

    # ── Reads ─────────────────────────────────────────────────

    def snapshot(self) -> list[GroupSnapshot]:
        """Current in-memory projection, without reconciliation."""
        return list(self._groups.values())

    async def get_all(self, force_refresh: bool = False) -> list[GroupSnapshot]:
        """All groups, reconciled against the live group count.

        Args:
            force_refresh: Skip the cache and refetch everything.
        """
        if force_refresh:
            return await self.refresh("forced")

        if self.state == CacheState.COLD_START:
            envelope = self.store.load(SNAPSHOT_KEY)
            if envelope is None:
                return await self.refresh("no valid cache")
            self._load_envelope(envelope.payload, envelope.captured_at)
            logger.info(f"Loaded {len(self._groups)} groups from cache")
        elif self._captured_at is None or self.store.is_expired(self._captured_at):
            return await self.refresh("cache expired")

        self.state = CacheState.VALIDATED
        cached = len(self._groups)
        try:
            live = await with_timeout(
                self.transport.count_participating_groups(), self.call_timeout, "group count probe",
            )
        except Exception as e:
            logger.error(f"Failed to check group count, using cache anyway: {e}")
            self.state = CacheState.LOADED
            return self.snapshot()

        if live != cached:
            self.state = CacheState.STALE
            logger.info(f"Group count mismatch (cached {cached}, current {live}), refreshing cache")
            return await self.refresh("count mismatch")

        self.state = CacheState.FRESH
        logger.debug(f"Group count matches ({cached}), using cache")
        self.state = CacheState.LOADED
        return self.snapshot()

    async def refresh(self, reason: str = "") -> list[GroupSnapshot]:
        """Refetch every group and replace the snapshot wholesale."""
        self.state = CacheState.REFRESHING
        logger.info(f"Fetching all participating groups{f' ({reason})' if reason else ''}")
        self.refresh_count += 1

        try:
            fetched = await with_timeout(
                self.transport.fetch_participating_groups(), self.call_timeout, "group fetch",
            )
        except Exception as e:
            logger.warning(f"Group refresh failed ({e}), falling back to cache")
            return self._fallback()

        groups = {jid: GroupSnapshot.from_metadata(meta) for jid, meta in fetched.items()}
        self._groups = groups

        envelope = self.store.save(SNAPSHOT_KEY, [g.to_dict() for g in groups.values()])
        self._captured_at = envelope.captured_at if envelope else self.store.now_ms()
        self.state = CacheState.LOADED

        if self.directory is not None:
            for jid, meta in fetched.items():
                self.directory.observe_group(jid, meta.subject, meta.participants)

        logger.info(f"Found and cached {len(groups)} groups")
        return self.snapshot()

    def _fallback(self) -> list[GroupSnapshot]:
        envelope = self.store.load(SNAPSHOT_KEY, allow_expired=True)
        if envelope is not None and envelope.payload:
            self._load_envelope(envelope.payload, envelope.captured_at)
            logger.info(f"Serving {len(self._groups)} groups from last snapshot")
        elif self._groups:
            logger.info(f"Serving {len(self._groups)} groups from memory")
        else:
            logger.warning("No cached groups available")

        self.state = CacheState.LOADED if self._groups else CacheState.COLD_START
        return self.snapshot()

    def _load_envelope(self, payload: list, captured_at: int):
        groups = {}
        for raw in payload:
            try:
                group = GroupSnapshot.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed group entry: {e}")
                continue
            groups[group.identifier] = group
        self._groups = groups
        self._captured_at = captured_at
        self.state = CacheState.LOADED

    # ── Lookups ───────────────────────────────────────────────

    def get(self, jid: str) -> Optional[GroupSnapshot]:
        return self._groups.get(jid)

    def find_by_name(self, name: str) -> Optional[GroupSnapshot]:
        """Exact (case-insensitive) name match first, then substring."""
        term = (name or "").strip().lower()
        if not term:
            return None
        for group in self._groups.values():
            if group.display_name.lower() == term:
                return group
        for group in self._groups.values():
            if term in group.display_name.lower():
                return group
        return None

    def list_names(self) -> list[str]:
        return [g.display_name for g in self._groups.values()]

    def count(self) -> int:
        return len(self._groups)

    async def cache_info(self, probe: bool = True) -> CacheInfo:
        """Snapshot existence/age plus an optional live count comparison."""
        exists = self.store.exists(SNAPSHOT_KEY)
        info = CacheInfo(
            exists=exists,
            age_seconds=self.store.age_of(SNAPSHOT_KEY),
            cached_count=len(self._groups),
        )
        if probe and exists:
            try:
                info.live_count = await with_timeout(
                    self.transport.count_participating_groups(), self.call_timeout, "group count probe",
                )
                info.mismatch = info.live_count != info.cached_count
            except Exception as e:
                logger.warning(f"Could not fetch current group count for comparison: {e}")
        return info

    # ── Targeted updates ──────────────────────────────────────

    def _apply_metadata(self, jid: str, meta: GroupMetadata):
        group = GroupSnapshot.from_metadata(meta)
        self._groups[jid] = group
        if self.directory is not None:
            self.directory.observe_group(jid, meta.subject)
        logger.info(f"Successfully cached group {jid} ({group.display_name}, {group.member_count} members)")

    def remove(self, jid: str) -> bool:
        if self._groups.pop(jid, None) is not None:
            logger.info(f"Removed group {jid} from cache after leaving")
            return True
        return False

    # ── Event handlers ────────────────────────────────────────

    async def on_groups_update(self, updates: list[dict]):
        """``groups.update``: queue a metadata refresh for each changed group."""
        if not self._groups:
            logger.debug(f"Ignoring {len(updates)} groups.update event(s) during initial load")
            return

        queued = 0
        for update in updates:
            jid = update.get("id")
            if jid and self.queue.enqueue(jid):
                queued += 1
        logger.info(f"Processing groups.update: {queued} of {len(updates)} queued")
        if len(self.queue):
            self.queue.schedule_drain(GROUPS_UPDATE_DRAIN_DELAY)

    async def on_participants_update(self, event: dict):
        """``group-participants.update``: drop groups we left, refresh the rest."""
        jid = event.get("id")
        if not jid:
            return

        participants = [
            p.get("id") if isinstance(p, dict) else p
            for p in (event.get("participants") or [])
        ]
        own_id = self.transport.own_id
        if event.get("action") == "remove" and own_id:
            own_user = user_part(own_id)
            if any(p and user_part(p) == own_user for p in participants):
                self.remove(jid)
                return

        if jid in self._groups:
            self.queue.enqueue(jid)
            self.queue.schedule_drain(PARTICIPANTS_DRAIN_DELAY)

    async def stop(self):
        await self.queue.stop()
