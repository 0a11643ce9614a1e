"""Error classification for user-facing messages."""

import asyncio

import httpx

from ..ai.provider import AIAuthError, AIBadResponseError, AIRateLimitError, AIUnavailableError
from ..transport.base import TransportRateLimitError, TransportTimeoutError, TransportError


def classify_error(e: Exception) -> str:
    """Classify any exception into a short message for a WhatsApp reply."""
    # 1-4: Typed AI exceptions
    if isinstance(e, AIUnavailableError):
        return "AI is not configured. Ask the owner to set an API key."
    if isinstance(e, AIRateLimitError):
        return "Rate limited. Please wait a moment and try again."
    if isinstance(e, AIAuthError):
        return "Authentication error. Owner may need to refresh credentials."
    if isinstance(e, AIBadResponseError):
        return "Unexpected response format from AI provider. Please try again."

    # 5-7: Transport
    if isinstance(e, TransportRateLimitError):
        return "WhatsApp is rate limiting requests. Please try again in a minute."
    if isinstance(e, TransportTimeoutError):
        return "WhatsApp did not answer in time. Please try again."
    if isinstance(e, TransportError):
        return "Could not reach WhatsApp. Please try again later."

    # 8: httpx HTTP status errors
    if isinstance(e, httpx.HTTPStatusError):
        code = e.response.status_code
        if code == 429:
            return "Rate limited. Please wait a moment and try again."
        if code in (401, 403):
            return "Authentication error. Owner may need to refresh credentials."
        if 500 <= code < 600:
            return "Provider is having server issues. Please try again later."
        return f"Provider returned HTTP {code}. Please try again later."

    # 9-10: Network / timeout errors
    if isinstance(e, httpx.ConnectError):
        return "Cannot connect to the provider. Please check connectivity and try again."
    if isinstance(e, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "Request timed out. Please try again."

    # 11: Storage
    if isinstance(e, OSError):
        return "Storage error. Please try again later."

    # 12: Unexpected response shape
    if isinstance(e, (KeyError, IndexError)):
        return "Unexpected response format. Please try again."

    # 13: Fallback, include type name for debugging
    type_name = type(e).__name__
    return f"Something went wrong ({type_name}). Check logs for details."
