from __future__ import annotations

from typing import Any

import discord

from ..common import IncomingMessage


def channel_kind(channel: Any) -> str:
    if isinstance(channel, discord.DMChannel):
        return "dm"
    if isinstance(channel, discord.GroupChannel):
        return "group_dm"
    return "guild"


def to_incoming(message: discord.Message) -> IncomingMessage:
    channel = message.channel
    guild = message.guild
    reference = message.reference
    reply_to = None
    if reference is not None and reference.message_id is not None:
        reply_to = str(reference.message_id)

    return IncomingMessage(
        message_id=str(message.id),
        channel_id=str(channel.id),
        channel_kind=channel_kind(channel),
        author_id=str(message.author.id),
        author_name=message.author.name,
        content=message.content or "",
        author_display_name=getattr(message.author, "display_name", "") or "",
        channel_name=getattr(channel, "name", None) or "",
        guild_id=str(guild.id) if guild is not None else None,
        guild_name=guild.name if guild is not None else "",
        mentioned_user_ids=frozenset(str(user.id) for user in message.mentions),
        reply_to_message_id=reply_to,
        raw=message,
    )


class DiscordGateway:
    """Platform operations used by the runtime, backed by a ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    @property
    def self_user_id(self) -> str:
        user = self.client.user
        return str(user.id) if user is not None else ""

    @property
    def self_username(self) -> str:
        user = self.client.user
        return user.name if user is not None else ""

    async def _channel(self, channel_id: str) -> Any:
        channel = self.client.get_channel(int(channel_id))
        if channel is None:
            channel = await self.client.fetch_channel(int(channel_id))
        if not callable(getattr(channel, "send", None)):
            raise RuntimeError(f"Channel {channel_id} cannot receive messages")
        return channel

    async def send(self, channel_id: str, text: str) -> None:
        channel = await self._channel(channel_id)
        await channel.send(text)

    async def reply(self, message: IncomingMessage, text: str) -> None:
        raw = message.raw
        if not isinstance(raw, discord.Message):
            raise RuntimeError(f"Message {message.message_id} has no platform object to reply to")
        await raw.reply(text)

    async def typing(self, channel_id: str) -> None:
        channel = await self._channel(channel_id)
        await channel.typing()

    async def fetch_channel_exists(self, channel_id: str) -> bool:
        try:
            await self._channel(channel_id)
        except (discord.HTTPException, RuntimeError, ValueError):
            return False
        return True

    async def fetch_message(self, channel_id: str, message_id: str) -> IncomingMessage:
        channel = await self._channel(channel_id)
        message = await channel.fetch_message(int(message_id))
        return to_incoming(message)

    async def fetch_message_author_id(self, channel_id: str, message_id: str) -> str | None:
        channel = await self._channel(channel_id)
        message = await channel.fetch_message(int(message_id))
        return str(message.author.id) if message.author is not None else None
