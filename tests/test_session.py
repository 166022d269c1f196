from __future__ import annotations

import asyncio

import pytest

import get_session


class FakeTelegramClient:
    def __init__(self, authorized: bool) -> None:
        self.authorized = authorized
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def is_user_authorized(self) -> bool:
        return self.authorized


def test_build_client_requires_credentials(monkeypatch) -> None:
    monkeypatch.setattr(get_session, "load_dotenv", lambda: None)
    monkeypatch.delenv("API_ID", raising=False)
    monkeypatch.setenv("API_HASH", "hash")

    with pytest.raises(RuntimeError, match="Missing API_ID"):
        get_session.build_client()


def test_build_client_rejects_non_numeric_api_id(monkeypatch) -> None:
    monkeypatch.setattr(get_session, "load_dotenv", lambda: None)
    monkeypatch.setenv("API_ID", "12ab")
    monkeypatch.setenv("API_HASH", "hash")

    with pytest.raises(RuntimeError, match="numeric"):
        get_session.build_client()


def test_build_client_uses_session_name(monkeypatch) -> None:
    created = []
    monkeypatch.setattr(get_session, "load_dotenv", lambda: None)
    monkeypatch.setattr(get_session, "TelegramClient", lambda *args: created.append(args) or "client")
    monkeypatch.setenv("API_ID", " 12345 ")
    monkeypatch.setenv("API_HASH", "hash")
    monkeypatch.setenv("SESSION_NAME", "frontdesk")

    assert get_session.build_client() == "client"
    assert created == [("frontdesk", 12345, "hash")]


def test_open_session_skips_login_when_authorized(monkeypatch) -> None:
    logins = []

    async def fake_authorize(client) -> None:
        logins.append(client)

    monkeypatch.setattr(get_session, "authorize", fake_authorize)
    client = FakeTelegramClient(authorized=True)

    asyncio.run(get_session.open_session(client))

    assert client.connected
    assert logins == []


def test_open_session_logs_in_when_needed(monkeypatch) -> None:
    logins = []

    async def fake_authorize(client) -> None:
        logins.append(client)

    monkeypatch.setattr(get_session, "authorize", fake_authorize)
    client = FakeTelegramClient(authorized=False)

    asyncio.run(get_session.open_session(client))

    assert logins == [client]
