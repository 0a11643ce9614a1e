"""WhatsApp transport contract.

The bot never talks to WhatsApp directly: everything goes through a
WhatsAppTransport (sending, existence checks, group metadata, media) and
its EventHub (inbound updates). Implementations raise the exceptions below
so callers can tell a rate limit from an ordinary failure.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

from .events import EventHub, log_event

logger = logging.getLogger("pocketpa.transport")

T = TypeVar("T")


# ════════════════════════════════════════════════════════
# Transport Exception Hierarchy
# ════════════════════════════════════════════════════════

class TransportError(Exception):
    """Base class for all transport failures."""
    pass

class TransportRateLimitError(TransportError):
    """429 / rate-overlimit — back off and retry later."""
    pass

class TransportTimeoutError(TransportError):
    """The call did not finish within the overall timeout."""
    pass


def is_rate_limit(error: BaseException) -> bool:
    if isinstance(error, TransportRateLimitError):
        return True
    return "rate-overlimit" in str(error)


async def with_timeout(call: Awaitable[T], timeout: Optional[float], what: str = "transport call") -> T:
    """Await ``call`` with an overall timeout, surfaced as TransportTimeoutError."""
    if not timeout:
        return await call
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise TransportTimeoutError(f"{what} timed out after {timeout:.0f}s")


# ════════════════════════════════════════════════════════
# Data
# ════════════════════════════════════════════════════════

@dataclass
class ExistenceResult:
    exists: bool
    jid: Optional[str] = None


@dataclass
class GroupMetadata:
    id: str
    subject: Optional[str] = None
    desc: Optional[str] = None
    participants: list[dict] = field(default_factory=list)
    size: Optional[int] = None

    @property
    def participant_count(self) -> int:
        if self.participants:
            return len(self.participants)
        return max(0, int(self.size or 0))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "GroupMetadata":
        return cls(
            id=raw["id"],
            subject=raw.get("subject"),
            desc=raw.get("desc"),
            participants=list(raw.get("participants") or []),
            size=raw.get("size"),
        )


# ════════════════════════════════════════════════════════
# Contract
# ════════════════════════════════════════════════════════

class WhatsAppTransport(ABC):
    """Abstract WhatsApp connection.

    Attributes:
        events: Hub on which inbound updates are published.
        own_id: The bot's own JID once connected (None before).
    """

    def __init__(self, events: Optional[EventHub] = None):
        self.events = events or EventHub(middleware=[log_event])
        self.own_id: Optional[str] = None

    @abstractmethod
    async def start(self):
        ...

    @abstractmethod
    async def stop(self):
        ...

    @abstractmethod
    async def send_text(self, jid: str, text: str):
        """Send a text message to a chat."""
        ...

    @abstractmethod
    async def on_whatsapp(self, jid: str) -> ExistenceResult:
        """Check whether ``jid`` is a registered WhatsApp account."""
        ...

    @abstractmethod
    async def group_metadata(self, jid: str) -> GroupMetadata:
        ...

    @abstractmethod
    async def fetch_participating_groups(self) -> dict[str, GroupMetadata]:
        """Full metadata of every group we are in."""
        ...

    async def count_participating_groups(self) -> int:
        """Cheap group-count probe. Default: size of the full fetch."""
        return len(await self.fetch_participating_groups())

    @abstractmethod
    async def download_media(self, message: dict) -> bytes:
        ...
