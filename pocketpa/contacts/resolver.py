"""Fuzzy name → JID resolution against the contact directory.

Precedence, stopping at the first hit:
  1. case-insensitive substring, either direction, in insertion order
  2. token overlap (query tokens longer than 2 chars inside a name token)
  3. phone number, confirmed by the transport's existence probe
  4. not found

No scoring: the directory is small and used interactively, so the first
hit in insertion order wins.
"""

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .directory import ContactDirectory, INDIVIDUAL_SUFFIX, is_individual, user_part

logger = logging.getLogger("pocketpa.contacts.resolver")

_PHONE_STRIP = re.compile(r"[+\s-]")

MAX_SUGGESTIONS = 5
MAX_PHONE_HINTS = 3


@dataclass
class Resolution:
    found: bool
    identifier: Optional[str] = None
    via: Optional[str] = None       # 'substring', 'tokens', 'phone'


@dataclass
class Suggestions:
    """Disambiguation hints for a failed lookup."""
    labels: list[str]               # "<name> (<phone>)", up to 5
    phone_only: list[str]           # phone numbers of unnamed contacts, up to 3
    individual_count: int = 0


def phone_to_jid(query: str) -> Optional[str]:
    """``"+1 555-0100"`` → ``"15550100@s.whatsapp.net"``; None if not a number."""
    digits = _PHONE_STRIP.sub("", query)
    if not digits or not digits.isdigit():
        return None
    return f"{digits}{INDIVIDUAL_SUFFIX}"


def _substring_match(query: str, name: str) -> bool:
    return query in name or name in query


class EntityResolver:
    """Resolves human names (or phone numbers) to contact JIDs.

    Args:
        directory: Contact projection searched in insertion order.
        probe: Async existence check ``jid -> ExistenceResult``; usually
            ``transport.on_whatsapp``. Without it, phone lookups fail.
    """

    def __init__(
        self,
        directory: ContactDirectory,
        probe: Optional[Callable[[str], Awaitable]] = None,
    ):
        self.directory = directory
        self.probe = probe

    async def resolve(self, query: str) -> Resolution:
        needle = (query or "").strip().lower()
        if not needle:
            return Resolution(found=False)

        records = self.directory.records()

        for record in records:
            if _substring_match(needle, record.best_name.lower()):
                logger.info(f"Resolved '{query}' -> {record.identifier} ({record.best_name})")
                return Resolution(found=True, identifier=record.identifier, via="substring")

        query_tokens = [t for t in needle.split() if len(t) > 2]
        if query_tokens:
            for record in records:
                name_tokens = record.best_name.lower().split()
                for token in query_tokens:
                    if any(token in part for part in name_tokens):
                        logger.info(
                            f"Resolved '{query}' -> {record.identifier} "
                            f"by partial match on '{token}'"
                        )
                        return Resolution(found=True, identifier=record.identifier, via="tokens")

        candidate = phone_to_jid(needle)
        if candidate and self.probe is not None:
            try:
                result = await self.probe(candidate)
            except Exception as e:
                logger.debug(f"Phone validation for {candidate} failed: {e}")
                result = None
            if result is not None and result.exists:
                jid = result.jid or candidate
                logger.info(f"Resolved '{query}' -> {jid} by phone validation")
                return Resolution(found=True, identifier=jid, via="phone")

        logger.warning(f"No contact found for '{query}' ({len(records)} contacts known)")
        return Resolution(found=False)

    def suggest(self, query: str) -> Suggestions:
        needle = (query or "").strip().lower()
        records = self.directory.records()

        labels = []
        if needle:
            for record in records:
                if _substring_match(needle, record.best_name.lower()):
                    labels.append(f"{record.best_name} ({user_part(record.identifier)})")
                    if len(labels) >= MAX_SUGGESTIONS:
                        break

        individuals = [r for r in records if is_individual(r.identifier)]
        phone_only = []
        if not labels:
            phone_only = [
                user_part(r.identifier) for r in individuals if not r.has_name
            ][:MAX_PHONE_HINTS]

        return Suggestions(labels=labels, phone_only=phone_only, individual_count=len(individuals))


def format_not_found(query: str, suggestions: Suggestions) -> str:
    """User-facing text for a failed lookup (without the PA prefix)."""
    if suggestions.labels:
        listing = "\n".join(f"{i}. {label}" for i, label in enumerate(suggestions.labels, 1))
        return (
            f'I couldn\'t find a contact named "{query}". Did you mean one of these?\n\n'
            f"{listing}\n\nPlease use the exact name or phone number."
        )
    if suggestions.phone_only:
        return (
            f'I couldn\'t find a contact named "{query}". I have '
            f"{suggestions.individual_count} contacts but most only have phone numbers.\n\n"
            f"Try using a phone number like: {suggestions.phone_only[0]}\n\n"
            "Or send a message to the person first so I can learn their name."
        )
    return (
        f'I couldn\'t find a contact named "{query}". Please use their phone number instead, '
        "or send them a message first so I can learn their name."
    )
