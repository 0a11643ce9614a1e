"""Helpers for reading Baileys-shaped message dicts.

A message looks like::

    {"key": {"remoteJid", "fromMe", "participant", "id"},
     "pushName": "Alex",
     "messageTimestamp": 1718000000,
     "message": {"conversation": "hi"} | {"extendedTextMessage": {"text"}} | ...}
"""

from datetime import datetime, timezone
from typing import Optional

MEDIA_TYPES = {
    "imageMessage": "image",
    "videoMessage": "video",
    "audioMessage": "audio",
    "documentMessage": "document",
    "stickerMessage": "sticker",
}
SYSTEM_TYPES = ("protocolMessage", "senderKeyDistributionMessage", "reactionMessage")


def content_of(message: dict) -> dict:
    return message.get("message") or {}


def extract_text(message: dict) -> Optional[str]:
    """Plain text, extended text, or an image/video caption."""
    content = content_of(message)
    return (
        content.get("conversation")
        or (content.get("extendedTextMessage") or {}).get("text")
        or (content.get("imageMessage") or {}).get("caption")
        or (content.get("videoMessage") or {}).get("caption")
        or None
    )


def is_voice_note(message: dict) -> bool:
    audio = content_of(message).get("audioMessage")
    return bool(audio) and bool(audio.get("ptt", True))


def media_type(message: dict) -> Optional[str]:
    content = content_of(message)
    for key, label in MEDIA_TYPES.items():
        if key in content:
            return label
    return None


def message_kind(message: dict) -> str:
    """'media', 'system' or 'text'."""
    if media_type(message):
        return "media"
    content = content_of(message)
    if not extract_text(message) and (any(k in content for k in SYSTEM_TYPES) or not content):
        return "system"
    return "text"


def sender_of(message: dict) -> Optional[str]:
    key = message.get("key") or {}
    return key.get("participant") or key.get("remoteJid")


def timestamp_iso(message: dict) -> str:
    """ISO-8601 UTC time of the message (now if it carries no timestamp)."""
    raw = message.get("messageTimestamp")
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
