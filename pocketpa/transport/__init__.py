"""WhatsApp transport — contract, event hub and the HTTP bridge adapter."""

from .base import (
    ExistenceResult,
    GroupMetadata,
    TransportError,
    TransportRateLimitError,
    TransportTimeoutError,
    WhatsAppTransport,
    is_rate_limit,
    with_timeout,
)
from .events import EventHub, log_event

__all__ = [
    "ExistenceResult",
    "GroupMetadata",
    "TransportError",
    "TransportRateLimitError",
    "TransportTimeoutError",
    "WhatsAppTransport",
    "is_rate_limit",
    "with_timeout",
    "EventHub",
    "log_event",
]
