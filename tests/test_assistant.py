"""Tests for the personal-assistant pipeline (keywords, AI reply parsing, routing)."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from pocketpa.ai.provider import AIRateLimitError
from pocketpa.bot.assistant import (
    AI_UNAVAILABLE,
    DELIVERY_FAILED,
    INVALID_FORMAT,
    VOICE_FAILED,
    PersonalAssistant,
    parse_ai_reply,
)
from pocketpa.contacts.resolver import EntityResolver
from pocketpa.transport.base import TransportError

from conftest import text_message

OWNER_CHAT = "15551111@s.whatsapp.net"
ALEX = "15552222@s.whatsapp.net"
PA_GROUP = "120363999@g.us"


def _ai(reply=None, transcript="hey pocket what time is it", error=None):
    ai = MagicMock()
    ai.complete = AsyncMock(return_value=reply, side_effect=error)
    ai.transcribe = AsyncMock(return_value=transcript)
    return ai


def _reply(text, target="self", type_="reply"):
    return json.dumps({"textResponse": text, "action": {"type": type_, "target": target}})


def _assistant(transport, directory, ai, **kwargs):
    resolver = EntityResolver(directory, probe=transport.on_whatsapp)
    return PersonalAssistant(transport, ai, resolver, pa_group_jid=PA_GROUP, **kwargs)


def _voice(chat=OWNER_CHAT):
    return {"key": {"remoteJid": chat, "id": "V1"}, "message": {"audioMessage": {"ptt": True}}}


class TestParseReply:
    def test_structured(self):
        reply = parse_ai_reply(_reply("Hi!", target="Alex"))
        assert reply.status == "ok"
        assert reply.text == "Hi!"
        assert reply.action.target == "Alex"

    def test_fenced_json(self):
        reply = parse_ai_reply("```json\n" + _reply("Hi!") + "\n```")
        assert reply.status == "ok"

    def test_plain_text(self):
        reply = parse_ai_reply("Sure, here you go")
        assert reply.status == "plain"
        assert reply.text == "Sure, here you go"

    def test_missing_fields_invalid(self):
        assert parse_ai_reply(json.dumps({"textResponse": "x"})).status == "invalid"
        assert parse_ai_reply(json.dumps({"action": {"type": "reply"}})).status == "invalid"

    def test_blank_target_means_self(self):
        raw = json.dumps({"textResponse": "x", "action": {"type": "reply", "target": ""}})
        assert parse_ai_reply(raw).action.target == "self"


class TestKeywordGate:
    @pytest.mark.asyncio
    async def test_prefix_required(self, transport, directory):
        ai = _ai(_reply("ok"))
        pa = _assistant(transport, directory, ai)
        assert await pa.handle_message(text_message(OWNER_CHAT, "hello there")) is False
        ai.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_prefixed_text_processed(self, transport, directory):
        ai = _ai(_reply("It is noon"))
        pa = _assistant(transport, directory, ai)
        assert await pa.handle_message(text_message(OWNER_CHAT, "@PA what time is it")) is True
        assert transport.sent == [(OWNER_CHAT, "[PA]: It is noon")]
        turns = ai.complete.call_args.args[0]
        assert turns[0].content == "@PA what time is it"

    @pytest.mark.asyncio
    async def test_pa_group_skips_keyword(self, transport, directory):
        ai = _ai(_reply("Hello"))
        pa = _assistant(transport, directory, ai)
        await pa.handle_message(text_message(PA_GROUP, "no prefix", participant=OWNER_CHAT))
        assert transport.sent == [(PA_GROUP, "[PA]: Hello")]

    @pytest.mark.asyncio
    async def test_pa_group_ignores_own_messages(self, transport, directory):
        ai = _ai(_reply("Hello"))
        pa = _assistant(transport, directory, ai)
        assert await pa.handle_message(text_message(PA_GROUP, "anything", from_me=True)) is False
        ai.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_own_pa_replies_ignored(self, transport, directory):
        ai = _ai(_reply("loop"))
        pa = _assistant(transport, directory, ai)
        assert await pa.handle_message(text_message(OWNER_CHAT, "[PA]: @PA echo", from_me=True)) is False

    @pytest.mark.asyncio
    async def test_ai_disabled_ignores_text(self, transport, directory):
        ai = _ai(_reply("x"))
        pa = _assistant(transport, directory, ai, ai_enabled=False)
        await pa.handle_message(text_message(OWNER_CHAT, "@PA hi"))
        assert transport.sent == []
        ai.complete.assert_not_awaited()


class TestVoice:
    @pytest.mark.asyncio
    async def test_keyword_in_transcript(self, transport, directory):
        ai = _ai(_reply("Noon"), transcript="Hey Pocket, what time is it?")
        pa = _assistant(transport, directory, ai)
        assert await pa.handle_message(_voice()) is True
        ai.transcribe.assert_awaited_once()
        assert transport.sent == [(OWNER_CHAT, "[PA]: Noon")]

    @pytest.mark.asyncio
    async def test_no_keyword_skipped(self, transport, directory):
        ai = _ai(_reply("Noon"), transcript="just a voice note")
        pa = _assistant(transport, directory, ai)
        assert await pa.handle_message(_voice()) is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_transcription_failure(self, transport, directory):
        ai = _ai()
        ai.transcribe = AsyncMock(side_effect=AIRateLimitError("429"))
        pa = _assistant(transport, directory, ai)
        await pa.handle_message(_voice())
        assert transport.sent == [(OWNER_CHAT, VOICE_FAILED)]

    @pytest.mark.asyncio
    async def test_ai_disabled_echoes_transcript(self, transport, directory):
        ai = _ai(transcript="pocket buy milk")
        pa = _assistant(transport, directory, ai, ai_enabled=False)
        await pa.handle_message(_voice())
        assert len(transport.sent) == 1
        assert 'I heard you say: "pocket buy milk"' in transport.sent[0][1]
        ai.complete.assert_not_awaited()


class TestAIOutcomes:
    @pytest.mark.asyncio
    async def test_ai_failure(self, transport, directory):
        pa = _assistant(transport, directory, _ai(error=AIRateLimitError("429")))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA hi"))
        assert transport.sent == [(OWNER_CHAT, AI_UNAVAILABLE)]

    @pytest.mark.asyncio
    async def test_plain_reply_sent_as_is(self, transport, directory):
        pa = _assistant(transport, directory, _ai("Just text"))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA hi"))
        assert transport.sent == [(OWNER_CHAT, "[PA]: Just text")]

    @pytest.mark.asyncio
    async def test_invalid_reply(self, transport, directory):
        pa = _assistant(transport, directory, _ai(json.dumps({"foo": 1})))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA hi"))
        assert transport.sent == [(OWNER_CHAT, "[PA]: " + INVALID_FORMAT)]

    @pytest.mark.asyncio
    async def test_other_action_answers_sender(self, transport, directory):
        pa = _assistant(transport, directory, _ai(_reply("Summary soon", target="Alex", type_="summary")))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA summarize"))
        assert transport.sent == [(OWNER_CHAT, "[PA]: Summary soon")]


class TestRouting:
    @pytest.mark.asyncio
    async def test_route_to_contact_name(self, transport, directory):
        directory.upsert(ALEX, display_name="Alex Smith")
        pa = _assistant(transport, directory, _ai(_reply("Dinner at 8?", target="alex")))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA ask alex about dinner"))
        assert transport.sent == [(ALEX, "[PA]: Dinner at 8?")]

    @pytest.mark.asyncio
    async def test_route_to_digits(self, transport, directory):
        pa = _assistant(transport, directory, _ai(_reply("Hi", target="15553333")))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA text 15553333"))
        assert transport.sent == [("15553333@s.whatsapp.net", "[PA]: Hi")]

    @pytest.mark.asyncio
    async def test_route_to_raw_jid(self, transport, directory):
        pa = _assistant(transport, directory, _ai(_reply("Hi all", target=PA_GROUP)))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA tell the group"))
        assert transport.sent == [(PA_GROUP, "[PA]: Hi all")]

    @pytest.mark.asyncio
    async def test_unknown_name_gets_hint(self, transport, directory):
        directory.upsert(ALEX, notify_name="15552222")
        pa = _assistant(transport, directory, _ai(_reply("Hi", target="zed")))
        await pa.handle_message(text_message(OWNER_CHAT, "@PA tell zed hi"))
        assert len(transport.sent) == 1
        jid, text = transport.sent[0]
        assert jid == OWNER_CHAT
        assert text.startswith("[PA]: I couldn't find a contact named \"zed\"")
        assert "Try using a phone number like: 15552222" in text

    @pytest.mark.asyncio
    async def test_delivery_failure_falls_back_to_origin(self, transport, directory):
        directory.upsert(ALEX, display_name="Alex")
        pa = _assistant(transport, directory, _ai(_reply("Hello Alex", target="Alex")))

        original_send = transport.send_text
        calls = []

        async def flaky_send(jid, text):
            calls.append(jid)
            if jid == ALEX:
                raise TransportError("not-authorized")
            await original_send(jid, text)

        transport.send_text = flaky_send
        await pa.handle_message(text_message(OWNER_CHAT, "@PA tell alex hello"))
        assert calls == [ALEX, OWNER_CHAT]
        assert transport.sent == [(OWNER_CHAT, "[PA]: " + DELIVERY_FAILED + "Hello Alex")]
