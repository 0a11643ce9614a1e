"""WhatsApp transport over a local HTTP bridge.

The bridge is a sidecar process that holds the actual WhatsApp Web session
(Baileys, whatsmeow, ...) and exposes it as a small JSON API:

    POST /send                      {"jid", "text"}
    GET  /on-whatsapp?jid=          {"exists", "jid"}
    GET  /groups                    {jid: metadata, ...}
    GET  /groups?summary=count      {"count": n}   (cheap probe)
    GET  /groups/{jid}              metadata
    GET  /media/{chat}/{msg_id}     raw bytes
    GET  /events?since=<cursor>     {"cursor": n, "events": [{"event", "data"}]}

Inbound events are long-polled in a background task and republished on the
EventHub with their Baileys names (``messages.upsert``, ``groups.update``...).
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from .base import (
    ExistenceResult,
    GroupMetadata,
    TransportError,
    TransportRateLimitError,
    TransportTimeoutError,
    WhatsAppTransport,
)
from .events import CONNECTION_UPDATE, EventHub

logger = logging.getLogger("pocketpa.transport.bridge")

_RESTART_DELAY = 5.0     # pause after a failed poll
_LONG_POLL_TIMEOUT = 30  # seconds the bridge may hold /events open


class BridgeTransport(WhatsAppTransport):
    """httpx client for the WhatsApp bridge sidecar."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        poll_interval: float = 2.0,
        events: Optional[EventHub] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 30.0,
    ):
        super().__init__(events)
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None
        self._poll_task: Optional[asyncio.Task] = None
        self._running = False
        self._cursor: Optional[str] = None

    # ── Lifecycle ──────────────────────────────────────────────

    async def start(self):
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.request_timeout,
            )
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"WhatsApp bridge transport started ({self.base_url})")

    async def stop(self):
        self._running = False
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("WhatsApp bridge transport stopped.")

    # ── HTTP ──────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self._client is None:
            raise TransportError("Bridge transport is not started")

        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 429 or (resp.status_code >= 400 and "rate-overlimit" in resp.text):
            raise TransportRateLimitError(f"rate-overlimit on {method} {path}")
        if resp.status_code >= 400:
            raise TransportError(f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}")
        return resp

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        resp = await self._request(method, path, **kwargs)
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

    # ── Operations ────────────────────────────────────────────

    async def send_text(self, jid: str, text: str):
        await self._json("POST", "/send", json={"jid": jid, "text": text})
        logger.debug(f"Sent {len(text)} chars to {jid}")

    async def on_whatsapp(self, jid: str) -> ExistenceResult:
        data = await self._json("GET", "/on-whatsapp", params={"jid": jid})
        if isinstance(data, list):
            data = data[0] if data else {}
        return ExistenceResult(exists=bool(data.get("exists")), jid=data.get("jid"))

    async def group_metadata(self, jid: str) -> GroupMetadata:
        data = await self._json("GET", f"/groups/{jid}")
        return GroupMetadata.from_dict(data)

    async def fetch_participating_groups(self) -> dict[str, GroupMetadata]:
        data = await self._json("GET", "/groups")
        items = data.values() if isinstance(data, dict) else data
        groups = {}
        for raw in items:
            meta = GroupMetadata.from_dict(raw)
            groups[meta.id] = meta
        return groups

    async def count_participating_groups(self) -> int:
        data = await self._json("GET", "/groups", params={"summary": "count"})
        if isinstance(data, dict) and "count" in data:
            return int(data["count"])
        raise TransportError("Bridge returned no group count")

    async def download_media(self, message: dict) -> bytes:
        key = message.get("key") or {}
        chat, msg_id = key.get("remoteJid"), key.get("id")
        if not chat or not msg_id:
            raise TransportError("Message has no key to download media for")
        resp = await self._request("GET", f"/media/{chat}/{msg_id}")
        return resp.content

    # ── Inbound event poller ──────────────────────────────────

    async def poll_once(self) -> int:
        """Fetch one batch of events and publish them. Returns the batch size."""
        params = {"since": self._cursor} if self._cursor is not None else {}
        data = await self._json(
            "GET", "/events", params=params, timeout=_LONG_POLL_TIMEOUT + self.request_timeout,
        )
        self._cursor = data.get("cursor", self._cursor)
        batch = data.get("events") or []

        for item in batch:
            name = item.get("event")
            payload = item.get("data")
            if not name:
                continue
            if name == CONNECTION_UPDATE and isinstance(payload, dict):
                me = (payload.get("me") or {}).get("id")
                if me:
                    self.own_id = me
            await self.events.emit(name, payload)
        return len(batch)

    async def _poll_loop(self):
        logger.info("WhatsApp event poller started")
        while self._running:
            try:
                count = await self.poll_once()
                if not count:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in WhatsApp event poll loop: {e}", exc_info=True)
                await asyncio.sleep(_RESTART_DELAY)
