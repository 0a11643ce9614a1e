"""AI collaborator — provider contract and the OpenAI adapter."""

from .openai import OpenAIProvider
from .provider import (
    AIAuthError,
    AIBadResponseError,
    AIError,
    AIProvider,
    AIRateLimitError,
    AIUnavailableError,
    Turn,
)

__all__ = [
    "AIAuthError",
    "AIBadResponseError",
    "AIError",
    "AIProvider",
    "AIRateLimitError",
    "AIUnavailableError",
    "OpenAIProvider",
    "Turn",
]
