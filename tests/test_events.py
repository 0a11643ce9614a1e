"""Tests for the event hub and its logging middleware."""

import logging

import pytest

from pocketpa.transport.events import GROUPS_UPDATE, MESSAGES_UPSERT, EventHub, log_event


class TestEventHub:
    @pytest.mark.asyncio
    async def test_handlers_run_in_order(self):
        hub = EventHub()
        calls = []

        async def first(payload):
            calls.append(("first", payload))

        async def second(payload):
            calls.append(("second", payload))

        hub.on(MESSAGES_UPSERT, first)
        hub.on(MESSAGES_UPSERT, second)
        assert await hub.emit(MESSAGES_UPSERT, 1) == 2
        assert calls == [("first", 1), ("second", 1)]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        hub = EventHub()
        calls = []

        async def broken(payload):
            raise ValueError("boom")

        async def ok(payload):
            calls.append(payload)

        hub.on(GROUPS_UPDATE, broken)
        hub.on(GROUPS_UPDATE, ok)
        assert await hub.emit(GROUPS_UPDATE, [{"id": "1@g.us"}]) == 1
        assert calls == [[{"id": "1@g.us"}]]

    @pytest.mark.asyncio
    async def test_off(self):
        hub = EventHub()

        async def handler(payload):
            pass

        wrapped = hub.on(GROUPS_UPDATE, handler)
        assert hub.handler_count(GROUPS_UPDATE) == 1
        hub.off(GROUPS_UPDATE, wrapped)
        assert hub.handler_count(GROUPS_UPDATE) == 0
        assert await hub.emit(GROUPS_UPDATE, []) == 0

    @pytest.mark.asyncio
    async def test_middleware_wraps_at_subscription(self):
        order = []

        def tag(name):
            def middleware(event, handler):
                async def wrapped(payload):
                    order.append(f"{name}:{event}")
                    await handler(payload)
                return wrapped
            return middleware

        async def handler(payload):
            order.append("handler")

        hub = EventHub(middleware=[tag("outer"), tag("inner")])
        hub.on(MESSAGES_UPSERT, handler)
        await hub.emit(MESSAGES_UPSERT, {})
        assert order == [f"outer:{MESSAGES_UPSERT}", f"inner:{MESSAGES_UPSERT}", "handler"]

    @pytest.mark.asyncio
    async def test_log_event_middleware(self, caplog):
        hub = EventHub(middleware=[log_event])

        async def on_update(payload):
            pass

        hub.on(GROUPS_UPDATE, on_update)
        with caplog.at_level(logging.DEBUG, logger="pocketpa.events"):
            await hub.emit(GROUPS_UPDATE, [{"id": "1@g.us"}, {"id": "2@g.us"}])
        assert "groups.update" in caplog.text
        assert "2 item(s)" in caplog.text
