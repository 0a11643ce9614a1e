"""In-process event hub for transport events.

Handlers subscribe with ``on(event, handler)``; ``emit`` awaits them in
registration order. A failing handler is logged and does not stop the
others. Cross-cutting behavior (logging) is attached as middleware that
wraps each handler when it subscribes.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("pocketpa.events")

# Event names (Baileys-compatible)
CONNECTION_UPDATE = "connection.update"
MESSAGES_UPSERT = "messages.upsert"
CONTACTS_UPSERT = "contacts.upsert"
CONTACTS_UPDATE = "contacts.update"
CHATS_UPSERT = "chats.upsert"
GROUPS_UPDATE = "groups.update"
GROUP_PARTICIPANTS_UPDATE = "group-participants.update"

Handler = Callable[[Any], Awaitable[None]]
Middleware = Callable[[str, Handler], Handler]


def _summarize(payload: Any) -> str:
    if isinstance(payload, list):
        return f"{len(payload)} item(s)"
    if isinstance(payload, dict):
        keys = ", ".join(sorted(payload.keys())[:5])
        return f"{{{keys}}}"
    return type(payload).__name__


def log_event(event: str, handler: Handler) -> Handler:
    """Middleware: log every delivery of ``event`` before the handler runs."""
    name = getattr(handler, "__qualname__", repr(handler))

    async def wrapped(payload: Any):
        logger.debug(f"[event] {event} -> {name}: {_summarize(payload)}")
        await handler(payload)

    wrapped.__qualname__ = name
    return wrapped


class EventHub:
    """Async publish/subscribe keyed by event name."""

    def __init__(self, middleware: Optional[list[Middleware]] = None):
        self._middleware = list(middleware or [])
        self._handlers: dict[str, list[Handler]] = {}

    def on(self, event: str, handler: Handler) -> Handler:
        """Subscribe ``handler``; returns the (middleware-wrapped) handler."""
        wrapped = handler
        for mw in reversed(self._middleware):
            wrapped = mw(event, wrapped)
        self._handlers.setdefault(event, []).append(wrapped)
        return wrapped

    def off(self, event: str, handler: Handler):
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every subscriber of ``event``.

        Returns:
            Number of handlers that completed without raising.
        """
        delivered = 0
        for handler in list(self._handlers.get(event, [])):
            try:
                await handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for {event} failed: {e}", exc_info=True)
        return delivered
