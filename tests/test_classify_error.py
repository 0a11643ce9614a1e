"""Tests for classify_error()."""

import asyncio

import httpx

from pocketpa.ai.provider import AIAuthError, AIBadResponseError, AIRateLimitError, AIUnavailableError
from pocketpa.bot.errors import classify_error
from pocketpa.transport.base import TransportError, TransportRateLimitError, TransportTimeoutError


# ── Typed AI exceptions ─────────────────────────────────────

class TestAIExceptions:
    def test_unavailable(self):
        assert "not configured" in classify_error(AIUnavailableError("no key"))

    def test_rate_limit(self):
        assert "Rate limited" in classify_error(AIRateLimitError("429"))

    def test_auth_error(self):
        assert "Authentication" in classify_error(AIAuthError("invalid key"))

    def test_bad_response(self):
        assert "Unexpected response format" in classify_error(AIBadResponseError("shape"))


# ── Transport ───────────────────────────────────────────────

class TestTransportExceptions:
    def test_rate_limit(self):
        assert "rate limiting" in classify_error(TransportRateLimitError("rate-overlimit"))

    def test_timeout(self):
        assert "did not answer in time" in classify_error(TransportTimeoutError("slow"))

    def test_generic(self):
        assert "Could not reach WhatsApp" in classify_error(TransportError("down"))


# ── httpx.HTTPStatusError ────────────────────────────────────

def _make_http_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.com/v1/chat")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(
        f"{status_code} error", request=request, response=response
    )


class TestHTTPStatusError:
    def test_429(self):
        assert "Rate limited" in classify_error(_make_http_error(429))

    def test_401(self):
        assert "Authentication" in classify_error(_make_http_error(401))

    def test_403(self):
        assert "Authentication" in classify_error(_make_http_error(403))

    def test_500(self):
        assert "server issues" in classify_error(_make_http_error(500))

    def test_unknown_status(self):
        assert "HTTP 418" in classify_error(_make_http_error(418))


# ── Network / other ─────────────────────────────────────────

class TestOtherErrors:
    def test_connect_error(self):
        assert "Cannot connect" in classify_error(httpx.ConnectError("refused"))

    def test_httpx_timeout(self):
        assert "timed out" in classify_error(httpx.ReadTimeout("slow"))

    def test_asyncio_timeout(self):
        assert "timed out" in classify_error(asyncio.TimeoutError())

    def test_os_error(self):
        assert "Storage error" in classify_error(OSError("disk full"))

    def test_key_error(self):
        assert "Unexpected response format" in classify_error(KeyError("choices"))

    def test_fallback_includes_type(self):
        msg = classify_error(ZeroDivisionError("oops"))
        assert "ZeroDivisionError" in msg
