"""Provider-agnostic AI interface (chat completion + speech-to-text)."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


# ════════════════════════════════════════════════════════
# AI exception hierarchy. Callers catch these instead of
# matching error strings.
# ════════════════════════════════════════════════════════

class AIError(Exception):
    """Base class for all AI provider errors."""
    pass

class AIUnavailableError(AIError):
    """No API key / provider not configured."""
    pass

class AIRateLimitError(AIError):
    """429 — rate limited."""
    pass

class AIAuthError(AIError):
    """401/403 — authentication or authorization failure."""
    pass

class AIBadResponseError(AIError):
    """Provider answered with something we cannot use."""
    pass


@dataclass
class Turn:
    role: str           # 'system', 'user', 'assistant'
    content: str


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    async def complete(self, turns: list[Turn], instruction: Optional[str] = None) -> str:
        """Return the assistant's reply to ``turns``.

        Args:
            turns: Conversation so far (usually a single user turn).
            instruction: Optional system instruction placed first.
        """
        ...

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str = "audio.ogg", language: str = "en") -> str:
        """Speech-to-text for a voice note."""
        ...
