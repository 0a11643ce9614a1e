"""End-to-end tests: events through PocketApp into the directory, resolver and registry."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from pocketpa.bot.app import PocketApp
from pocketpa.transport import events as ev

from conftest import make_group, no_sleep, text_message

ALEX = "1555@s.whatsapp.net"
OWNER = "15551111@s.whatsapp.net"
FAMILY = "120363001@g.us"


def _notify(*messages):
    return {"type": "notify", "messages": list(messages)}


@pytest.fixture
def app(settings, transport):
    return PocketApp(settings, transport, ai=None, sleep=no_sleep)


class TestContactScenario:
    @pytest.mark.asyncio
    async def test_renamed_contact_resolves_by_both_names(self, app, transport):
        await app.start()
        await transport.events.emit(ev.MESSAGES_UPSERT, _notify(text_message(ALEX, "hi", push_name="Alex")))
        assert (await app.resolver.resolve("alex")).identifier == ALEX

        await transport.events.emit(
            ev.MESSAGES_UPSERT, _notify(text_message(ALEX, "hi again", push_name="Alexandra", msg_id="M2")),
        )
        assert app.directory.get(ALEX).display_name == "Alexandra"
        assert (await app.resolver.resolve("Alexandra")).identifier == ALEX

        found = await app.resolver.resolve("Al")
        assert found.identifier == ALEX
        assert [r.identifier for r in app.directory.records()].count(ALEX) == 1
        await app.stop()

    @pytest.mark.asyncio
    async def test_contacts_persisted_on_stop(self, app, transport, settings):
        await app.start()
        await transport.events.emit(ev.CONTACTS_UPSERT, [{"id": ALEX, "name": "Alex", "notify": "Al"}])
        await transport.events.emit(ev.CHATS_UPSERT, [{"id": FAMILY, "name": "Family"}, {"id": ALEX, "name": "x"}])
        await app.stop()

        with open(settings.contacts_path, encoding="utf-8") as f:
            data = json.load(f)
        assert data[ALEX] == {"name": "Alex", "notify": "Al"}
        assert data[FAMILY] == {"name": "Family", "notify": "Family"}


class TestStartup:
    @pytest.mark.asyncio
    async def test_connection_open_loads_groups(self, app, transport):
        transport.groups = {FAMILY: make_group(FAMILY, "Family", size=2)}
        await app.start()
        assert transport.started

        await transport.events.emit(ev.CONNECTION_UPDATE, {"connection": "open"})
        await app._initial_load

        assert app.registry.count() == 1
        assert app.directory.get(FAMILY).display_name == "Family"
        assert app.directory.stats()["individuals"] == 2
        await app.stop()
        assert not transport.started

    @pytest.mark.asyncio
    async def test_non_open_update_ignored(self, app, transport):
        await app.start()
        await transport.events.emit(ev.CONNECTION_UPDATE, {"connection": "connecting"})
        assert app._initial_load is None
        await app.stop()


class TestMessageRouting:
    @pytest.mark.asyncio
    async def test_command_answered_and_history_collected(self, app, transport):
        transport.groups = {FAMILY: make_group(FAMILY, "Family")}
        await app.start()
        await transport.events.emit(ev.MESSAGES_UPSERT, _notify(
            text_message(FAMILY, "hello family", participant=ALEX, push_name="Alex", msg_id="G1"),
        ))
        await transport.events.emit(ev.MESSAGES_UPSERT, _notify(text_message(OWNER, "/groups", msg_id="C1")))

        assert transport.sent[-1][0] == OWNER
        assert "1. Family" in transport.sent[-1][1]
        assert [m.content for m in app.collector.buffered(FAMILY)] == ["hello family"]
        await app.stop()

    @pytest.mark.asyncio
    async def test_pa_message_reaches_assistant(self, settings, transport):
        settings.ai_enabled = True
        ai = MagicMock()
        ai.complete = AsyncMock(return_value='{"textResponse": "Hi!", "action": {"type": "reply", "target": "self"}}')
        app = PocketApp(settings, transport, ai=ai, sleep=no_sleep)
        await app.start()

        await transport.events.emit(ev.MESSAGES_UPSERT, _notify(text_message(OWNER, "@PA hello")))
        assert transport.sent == [(OWNER, "[PA]: Hi!")]
        await app.stop()

    @pytest.mark.asyncio
    async def test_append_batches_not_answered(self, app, transport):
        await app.start()
        await transport.events.emit(ev.MESSAGES_UPSERT, {
            "type": "append",
            "messages": [text_message(OWNER, "/groups", push_name="Owner")],
        })
        assert transport.sent == []
        assert app.directory.get(OWNER).display_name == "Owner"
        await app.stop()
