"""Personal-assistant pipeline.

Text addressed to the PA (``@PA ...``) and voice notes that mention the
voice keyword are sent to the AI. The AI answers with JSON::

    {"textResponse": "...", "action": {"type": "reply", "target": "Alex"}}

and the text is delivered to the target: the origin chat (``self``), a
phone number, a raw JID, or a contact name resolved through the
EntityResolver. Every PA message starts with the reply prefix.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from ..ai.provider import AIProvider, Turn
from ..contacts.directory import INDIVIDUAL_SUFFIX
from ..contacts.resolver import EntityResolver, format_not_found
from ..transport import messages as wa
from ..transport.base import WhatsAppTransport
from .errors import classify_error

logger = logging.getLogger("pocketpa.assistant")

AI_UNAVAILABLE = "Sorry, AI is currently unavailable. Please try again later."
VOICE_FAILED = "Sorry, I had trouble processing your voice message. Please try again or send a text message."
INVALID_FORMAT = "Sorry, I received an invalid response format. Please try again."
DELIVERY_FAILED = "Sorry, I couldn't deliver the message to the specified target. Here's what I wanted to say: "

DEFAULT_INSTRUCTION = """You are a personal assistant living inside the owner's WhatsApp.
Answer ONLY with a JSON object, no prose around it:
{"textResponse": "<message to send>", "action": {"type": "reply" | "negotiate" | "summary", "target": "self" | "<contact name>" | "<phone number>"}}
Use target "self" to answer the person who wrote to you. When asked to message
someone else, put their name or phone number (digits only) in target and write
textResponse as the message they should receive."""

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class AIAction:
    type: str
    target: str = "self"


@dataclass
class ParsedReply:
    """Result of parsing an AI answer.

    ``status`` is 'ok' (structured), 'plain' (not JSON, send as-is) or
    'invalid' (JSON without the required fields).
    """
    status: str
    text: str
    action: Optional[AIAction] = None


def parse_ai_reply(raw: str) -> ParsedReply:
    body = (raw or "").strip()
    fenced = _FENCE.match(body)
    if fenced:
        body = fenced.group(1)

    try:
        data: Any = json.loads(body)
    except ValueError:
        return ParsedReply(status="plain", text=raw)

    if not isinstance(data, dict):
        return ParsedReply(status="plain", text=raw)

    text = data.get("textResponse")
    action = data.get("action")
    if not text or not isinstance(action, dict):
        return ParsedReply(status="invalid", text="")

    target = action.get("target")
    return ParsedReply(
        status="ok",
        text=str(text),
        action=AIAction(
            type=str(action.get("type") or ""),
            target=str(target) if target not in (None, "") else "self",
        ),
    )


class PersonalAssistant:
    """Routes PA-addressed messages through the AI and delivers the answer.

    Args:
        transport: Used to send replies and download voice notes.
        ai: AI provider (None disables both chat and transcription).
        resolver: Contact name resolution for reply targets.
        ai_enabled: When False, text is ignored and voice notes are echoed.
        keyword_prefixes: Text prefixes addressing the PA.
        voice_keyword: Word a transcript must contain.
        pa_group_jid: Group in which every message goes to the PA.
        reply_prefix: Prepended to everything the PA sends.
        transcription_language: ISO 639-1 hint for speech-to-text.
        instruction: System instruction for the AI.
    """

    def __init__(
        self,
        transport: WhatsAppTransport,
        ai: Optional[AIProvider],
        resolver: EntityResolver,
        ai_enabled: bool = True,
        keyword_prefixes: tuple[str, ...] = ("@PA", "@pa"),
        voice_keyword: str = "pocket",
        pa_group_jid: Optional[str] = None,
        reply_prefix: str = "[PA]: ",
        transcription_language: str = "en",
        instruction: Optional[str] = None,
    ):
        self.transport = transport
        self.ai = ai
        self.resolver = resolver
        self.ai_enabled = ai_enabled
        self.keyword_prefixes = tuple(keyword_prefixes)
        self.voice_keyword = voice_keyword.lower()
        self.pa_group_jid = pa_group_jid
        self.reply_prefix = reply_prefix
        self.transcription_language = transcription_language
        self.instruction = instruction or DEFAULT_INSTRUCTION

    # ── Entry points ──────────────────────────────────────────

    async def handle_message(self, message: dict) -> bool:
        """Process one message if it is addressed to the PA.

        Returns:
            True if the message went through the PA pipeline.
        """
        key = message.get("key") or {}
        chat = key.get("remoteJid")
        if not chat or not message.get("message"):
            return False

        check_keywords = not (self.pa_group_jid and chat == self.pa_group_jid)
        if not check_keywords and key.get("fromMe"):
            return False

        try:
            if wa.is_voice_note(message):
                return await self.handle_voice(message, check_keywords)
            return await self.handle_text(message, check_keywords)
        except Exception as e:
            logger.error(f"Error handling message {key.get('id')} from {chat}: {e}", exc_info=True)
            return False

    async def handle_text(self, message: dict, check_keywords: bool = True) -> bool:
        chat = message["key"]["remoteJid"]
        text = wa.extract_text(message)
        if not text or text.startswith(self.reply_prefix):
            return False

        if check_keywords and not text.startswith(self.keyword_prefixes):
            logger.debug(f"Text from {chat} is not addressed to the PA, skipping")
            return False

        logger.info(f"PA text message from {chat}: {text[:80]}")
        await self.process(chat, text, "text")
        return True

    async def handle_voice(self, message: dict, check_keywords: bool = True) -> bool:
        chat = message["key"]["remoteJid"]
        logger.info(f"Voice note received from {chat}")

        try:
            if self.ai is None:
                raise RuntimeError("no AI provider configured for transcription")
            audio = await self.transport.download_media(message)
            logger.info(f"Audio downloaded ({len(audio)} bytes), starting transcription...")
            transcript = await self.ai.transcribe(
                audio, filename="audio.ogg", language=self.transcription_language,
            )
        except Exception as e:
            logger.error(f"Failed to process voice note from {chat}: {classify_error(e)} ({e})")
            await self._safe_send(chat, VOICE_FAILED)
            return False

        if check_keywords and self.voice_keyword not in transcript.lower():
            logger.info(f"Voice note does not mention '{self.voice_keyword}', skipping")
            return False

        await self.process(chat, transcript, "audio")
        return True

    # ── AI round trip ─────────────────────────────────────────

    async def process(self, chat: str, content: str, kind: str):
        """Send ``content`` to the AI and act on its answer."""
        if not self.ai_enabled or self.ai is None:
            if kind == "audio":
                await self._safe_send(
                    chat,
                    f'I heard you say: "{content}"\n\n'
                    f'You mentioned "{self.voice_keyword}" - AI is currently disabled, but I detected the keyword!',
                )
            return

        logger.info(f"Processing AI request from {chat} ({kind})")
        try:
            raw = await self.ai.complete([Turn(role="user", content=content)], instruction=self.instruction)
        except Exception as e:
            logger.error(f"AI request failed ({kind}): {classify_error(e)} ({e})")
            await self._safe_send(chat, AI_UNAVAILABLE)
            return

        reply = parse_ai_reply(raw)
        if reply.status == "plain":
            logger.warning(f"AI reply is not JSON, sending as plain text: {raw[:200]}")
            await self._safe_send(chat, self.reply_prefix + raw)
            return
        if reply.status == "invalid":
            logger.error(f"Invalid AI response format: {raw[:200]}")
            await self._safe_send(chat, self.reply_prefix + INVALID_FORMAT)
            return

        action = reply.action
        logger.info(f"Parsed AI response: action={action.type} target={action.target} ({len(reply.text)} chars)")

        if action.type == "reply":
            await self.route_reply(chat, reply.text, action.target)
        else:
            if action.type in ("negotiate", "summary"):
                logger.info(f"'{action.type}' action not implemented yet, answering the sender")
            else:
                logger.warning(f"Unknown action type '{action.type}', answering the sender")
            await self._safe_send(chat, self.reply_prefix + reply.text)

    async def route_reply(self, origin: str, text: str, target: str):
        """Deliver ``text`` to ``target`` (see module docstring)."""
        message = self.reply_prefix + text
        target = (target or "self").strip()

        if target == "self":
            destination = origin
        elif target.isdigit():
            destination = f"{target}{INDIVIDUAL_SUFFIX}"
        elif "@" in target:
            destination = target
        else:
            resolution = await self.resolver.resolve(target)
            if not resolution.found:
                suggestions = self.resolver.suggest(target)
                await self._safe_send(origin, self.reply_prefix + format_not_found(target, suggestions))
                return
            destination = resolution.identifier

        try:
            await self.transport.send_text(destination, message)
            logger.info(f"Reply sent to {destination} (origin {origin}, {len(text)} chars)")
        except Exception as e:
            logger.error(f"Failed to send reply to {destination}: {e}")
            await self._safe_send(origin, self.reply_prefix + DELIVERY_FAILED + text)

    async def _safe_send(self, jid: str, text: str) -> bool:
        try:
            await self.transport.send_text(jid, text)
            return True
        except Exception as e:
            logger.error(f"Failed to send message to {jid}: {e}")
            return False
