"""OpenAI-compatible provider (OpenAI, Groq, Together, etc.)."""

import asyncio
import logging
from typing import Optional

import httpx

from .provider import (
    AIAuthError,
    AIBadResponseError,
    AIError,
    AIProvider,
    AIRateLimitError,
    AIUnavailableError,
    Turn,
)

logger = logging.getLogger("pocketpa.ai.openai")

DEFAULT_CHAT_MODEL = "gpt-4.1-mini-2025-04-14"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"


class OpenAIProvider(AIProvider):
    """OpenAI-compatible API provider.

    Works with any OpenAI-compatible endpoint:
    - OpenAI: https://api.openai.com/v1
    - Groq:   https://api.groq.com/openai/v1
    """

    def __init__(
        self,
        api_key: Optional[str],
        chat_model: str = DEFAULT_CHAT_MODEL,
        transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL,
        base_url: str = "https://api.openai.com/v1",
        system_prompt: str = "",
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.chat_model = chat_model
        self.transcription_model = transcription_model
        self.base_url = base_url.rstrip("/")
        self.system_prompt = system_prompt
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "openai"

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _require_key(self, what: str):
        if not self.api_key:
            raise AIUnavailableError(
                f"OpenAI API key is missing. Set POCKETPA_OPENAI_API_KEY to enable {what}."
            )

    @staticmethod
    def _raise_for_status(resp: httpx.Response):
        code = resp.status_code
        if code < 400:
            return
        detail = resp.text[:200]
        if code == 429:
            raise AIRateLimitError(f"Rate limited: {detail}")
        if code in (401, 403):
            raise AIAuthError(f"Authentication failed ({code}): {detail}")
        raise AIError(f"OpenAI returned HTTP {code}: {detail}")

    # ── Chat ──────────────────────────────────────────────────

    async def complete(self, turns: list[Turn], instruction: Optional[str] = None) -> str:
        self._require_key("AI responses")

        messages = []
        system = instruction or self.system_prompt
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend({"role": t.role, "content": t.content} for t in turns)

        body = {"model": self.chat_model, "messages": messages}
        logger.debug(f"Request: model={self.chat_model}, messages={len(messages)}")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(2):
                try:
                    resp = await client.post(
                        f"{self.base_url}/chat/completions",
                        json=body,
                        headers=self._get_headers(),
                    )
                except httpx.TimeoutException as e:
                    raise AIError(f"Chat request timed out: {e}") from e
                except httpx.HTTPError as e:
                    raise AIError(f"Chat request failed: {e}") from e

                if 500 <= resp.status_code < 600 and attempt < 1:
                    logger.warning(f"OpenAI {resp.status_code}, retrying in 1s (attempt {attempt + 1}/2)")
                    await asyncio.sleep(1)
                    continue

                self._raise_for_status(resp)
                break

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIBadResponseError(f"Unexpected chat response shape: {e}") from e

        usage = data.get("usage") or {}
        logger.info(
            f"Chat reply: {len(content)} chars "
            f"(in={usage.get('prompt_tokens', 0)}, out={usage.get('completion_tokens', 0)})"
        )
        return content.strip()

    # ── Speech-to-text ────────────────────────────────────────

    async def transcribe(self, audio: bytes, filename: str = "audio.ogg", language: str = "en") -> str:
        self._require_key("audio transcription")

        files = {"file": (filename, audio, "audio/ogg")}
        data = {"model": self.transcription_model}
        if language:
            data["language"] = language

        try:
            async with httpx.AsyncClient(timeout=60) as client:
                resp = await client.post(
                    f"{self.base_url}/audio/transcriptions",
                    headers=self._get_headers(),
                    files=files,
                    data=data,
                )
        except httpx.TimeoutException as e:
            raise AIError("Transcription request timed out (60s)") from e
        except httpx.HTTPError as e:
            raise AIError(f"Transcription request failed: {e}") from e

        self._raise_for_status(resp)

        try:
            text = (resp.json().get("text") or "").strip()
        except ValueError as e:
            raise AIBadResponseError("Transcription response is not JSON") from e

        logger.info(f"Transcribed {len(audio)} bytes -> {len(text)} chars")
        return text
