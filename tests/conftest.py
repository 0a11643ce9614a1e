"""Pytest configuration and shared fixtures."""

import pytest

from pocketpa.config import PocketSettings
from pocketpa.contacts.directory import ContactDirectory
from pocketpa.storage.kv_cache import JsonKVCache
from pocketpa.transport.base import ExistenceResult, GroupMetadata, TransportError, WhatsAppTransport


class FakeTransport(WhatsAppTransport):
    """In-memory WhatsApp transport that records every call.

    ``groups`` is what the full fetch returns; ``live_count`` overrides the
    count probe (defaults to ``len(groups)``). Set ``*_error`` attributes to
    an exception to make the matching call raise it.
    """

    def __init__(self):
        super().__init__()
        self.own_id = "15550000@s.whatsapp.net"
        self.sent: list[tuple[str, str]] = []
        self.groups: dict[str, GroupMetadata] = {}
        self.live_count = None
        self.registered: dict[str, str] = {}
        self.media = b"OggS-fake-audio"

        self.fetch_calls = 0
        self.count_calls = 0
        self.metadata_calls: list[str] = []
        self.probe_calls: list[str] = []

        self.fetch_error = None
        self.count_error = None
        self.send_error = None
        self.metadata_error = None
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def send_text(self, jid: str, text: str):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, text))

    async def on_whatsapp(self, jid: str) -> ExistenceResult:
        self.probe_calls.append(jid)
        if jid in self.registered:
            return ExistenceResult(exists=True, jid=self.registered[jid])
        return ExistenceResult(exists=False)

    async def group_metadata(self, jid: str) -> GroupMetadata:
        self.metadata_calls.append(jid)
        if self.metadata_error is not None:
            raise self.metadata_error
        if jid not in self.groups:
            raise TransportError(f"unknown group {jid}")
        return self.groups[jid]

    async def fetch_participating_groups(self) -> dict[str, GroupMetadata]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return dict(self.groups)

    async def count_participating_groups(self) -> int:
        self.count_calls += 1
        if self.count_error is not None:
            raise self.count_error
        return self.live_count if self.live_count is not None else len(self.groups)

    async def download_media(self, message: dict) -> bytes:
        return self.media


def make_group(jid: str, subject: str, size: int = 3, desc=None) -> GroupMetadata:
    participants = [{"id": f"1555000{i}@s.whatsapp.net"} for i in range(size)]
    return GroupMetadata(id=jid, subject=subject, desc=desc, participants=participants, size=size)


def text_message(chat: str, text: str, push_name=None, participant=None, from_me=False, msg_id="M1", ts=1718000000):
    key = {"remoteJid": chat, "fromMe": from_me, "id": msg_id}
    if participant:
        key["participant"] = participant
    message = {"key": key, "message": {"conversation": text}, "messageTimestamp": ts}
    if push_name:
        message["pushName"] = push_name
    return message


async def no_sleep(seconds: float):
    return None


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def directory(tmp_path):
    cache = JsonKVCache(
        str(tmp_path / "contacts.json"),
        str(tmp_path / "contacts_backup.json"),
        save_delay=60,
    )
    d = ContactDirectory(cache)
    d.load()
    return d


@pytest.fixture
def settings(tmp_path):
    return PocketSettings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        groups_cache_file=str(tmp_path / "data" / "groups_cache.json"),
        history_cache_dir=str(tmp_path / "history_cache"),
        contacts_save_delay=60,
        initial_groups_delay=0,
        refresh_base_delay=0,
        refresh_step_delay=0,
        refresh_cooldown=0,
        log_file=None,
    )
