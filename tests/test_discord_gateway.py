from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

discord = pytest.importorskip("discord")

from persona_bot.common import IncomingMessage  # noqa: E402
from persona_bot.discord.client import PersonaDiscordBot  # noqa: E402
from persona_bot.discord.gateway import DiscordGateway, to_incoming  # noqa: E402


class _FakeChannel:
    def __init__(self, channel_id: int, messages: dict[int, object] | None = None) -> None:
        self.id = channel_id
        self.name = "general"
        self.sent: list[str] = []
        self.messages = dict(messages or {})

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def fetch_message(self, message_id: int) -> object:
        if message_id not in self.messages:
            raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Message")
        return self.messages[message_id]


def _fake_client(channels: dict[int, _FakeChannel]) -> SimpleNamespace:
    async def fetch_channel(channel_id: int) -> _FakeChannel:
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Channel")

    return SimpleNamespace(
        user=SimpleNamespace(id=42, name="kai_bot"),
        get_channel=channels.get,
        fetch_channel=fetch_channel,
    )


def _fake_message(channel: _FakeChannel, message_id: int = 7, author_id: int = 1) -> SimpleNamespace:
    return SimpleNamespace(
        id=message_id,
        channel=channel,
        guild=SimpleNamespace(id=99, name="Cool Server"),
        author=SimpleNamespace(id=author_id, name="alice", display_name="Alice A."),
        content="hey @kai",
        mentions=[SimpleNamespace(id=42)],
        reference=SimpleNamespace(message_id=5),
    )


def test_to_incoming_maps_guild_message() -> None:
    channel = _FakeChannel(10)

    incoming = to_incoming(_fake_message(channel))  # type: ignore[arg-type]

    assert incoming.message_id == "7"
    assert incoming.channel_id == "10"
    assert incoming.channel_kind == "guild"
    assert incoming.guild_id == "99"
    assert incoming.location_label == "Cool Server"
    assert incoming.speaker_label == "Alice A."
    assert incoming.mentioned_user_ids == frozenset({"42"})
    assert incoming.reply_to_message_id == "5"


def test_gateway_send_fetch_and_existence_checks() -> None:
    channel = _FakeChannel(10)
    channel.messages[5] = _fake_message(channel, message_id=5, author_id=42)
    gateway = DiscordGateway(_fake_client({10: channel}))  # type: ignore[arg-type]

    async def scenario() -> None:
        await gateway.send("10", "hello")
        assert await gateway.fetch_channel_exists("10") is True
        assert await gateway.fetch_channel_exists("11") is False
        assert await gateway.fetch_message_author_id("10", "5") == "42"
        fetched = await gateway.fetch_message("10", "5")
        assert fetched.author_id == "42"
        with pytest.raises(discord.NotFound):
            await gateway.fetch_message_author_id("10", "6")

    asyncio.run(scenario())

    assert channel.sent == ["hello"]
    assert gateway.self_user_id == "42"
    assert gateway.self_username == "kai_bot"


def test_reply_without_platform_message_raises() -> None:
    gateway = DiscordGateway(_fake_client({}))  # type: ignore[arg-type]
    incoming = IncomingMessage(
        message_id="1",
        channel_id="10",
        channel_kind="guild",
        author_id="1",
        author_name="alice",
        content="hi",
    )

    with pytest.raises(RuntimeError):
        asyncio.run(gateway.reply(incoming, "hey"))


def test_trigger_forces_the_fetched_message_through_the_debouncer() -> None:
    calls: list[tuple[str, bool]] = []
    incoming = IncomingMessage(
        message_id="5",
        channel_id="10",
        channel_kind="guild",
        author_id="1",
        author_name="alice",
        content="old",
    )

    async def fetch_message(channel_id: str, message_id: str) -> IncomingMessage:
        return incoming

    async def on_incoming(message: IncomingMessage, force: bool = False) -> bool:
        calls.append((message.message_id, force))
        return True

    fake_bot = SimpleNamespace(
        gateway=SimpleNamespace(fetch_message=fetch_message),
        debouncer=SimpleNamespace(on_incoming=on_incoming),
    )

    assert asyncio.run(PersonaDiscordBot.trigger(fake_bot, "10", "5")) is True  # type: ignore[arg-type]
    assert calls == [("5", True)]


def test_on_message_ignores_self_and_logs_handler_failures(caplog: pytest.LogCaptureFixture) -> None:
    seen: list[str] = []

    async def on_incoming(message: IncomingMessage, force: bool = False) -> bool:
        seen.append(message.content)
        raise RuntimeError("boom")

    fake_bot = SimpleNamespace(
        user=SimpleNamespace(id=42),
        name="Kai",
        debouncer=SimpleNamespace(on_incoming=on_incoming),
    )
    channel = _FakeChannel(10)

    async def scenario() -> None:
        await PersonaDiscordBot.on_message(fake_bot, _fake_message(channel, author_id=42))  # type: ignore[arg-type]
        await PersonaDiscordBot.on_message(fake_bot, _fake_message(channel, author_id=1))  # type: ignore[arg-type]

    asyncio.run(scenario())

    assert seen == ["hey @kai"]
    assert "Failed to handle message" in caplog.text
