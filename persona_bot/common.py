from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

SPLIT_TOKEN = "[SPLIT]"
GOSSIP_MARKER = "[GOSSIP]"

ROLE_USER = "user"
ROLE_MODEL = "model"

DIRECT_CHANNEL_KINDS = frozenset({"dm", "group_dm"})


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]

    window = text[:limit]
    cut = window.rfind(" ")
    if cut >= int(limit * 0.7):
        return window[:cut].strip()

    return (window[: limit - 3].rstrip() + "...").strip()


def read_text_with_fallback(path: Path) -> str:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "cp1251"):
        try:
            return path.read_text(encoding=encoding)
        except Exception as exc:
            last_exc = exc
    if last_exc is not None:
        raise last_exc
    raise RuntimeError(f"Failed to read file: {path}")


def uniform_delay_seconds(rng: random.Random, min_ms: int, max_ms: int) -> float:
    return (min_ms + rng.random() * (max_ms - min_ms)) / 1000.0


def join_split_parts(text: str) -> str:
    return text.replace(SPLIT_TOKEN, " ")


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One entry of a channel's recent history."""

    channel_id: str
    author_id: str
    author_name: str
    content: str
    role: str = ROLE_USER
    message_id: str = ""
    timestamp: float | None = None


@dataclass(slots=True)
class IncomingMessage:
    """Platform-neutral view of a received message.

    ``raw`` keeps the platform object so the gateway can reply to it.
    """

    message_id: str
    channel_id: str
    channel_kind: str
    author_id: str
    author_name: str
    content: str
    author_display_name: str = ""
    channel_name: str = ""
    guild_id: str | None = None
    guild_name: str = ""
    mentioned_user_ids: frozenset[str] = frozenset()
    reply_to_message_id: str | None = None
    raw: Any = field(default=None, repr=False, compare=False)

    @property
    def is_direct(self) -> bool:
        return self.channel_kind in DIRECT_CHANNEL_KINDS

    @property
    def location_label(self) -> str:
        if self.channel_kind == "group_dm":
            return self.channel_name or "Group Chat"
        if self.channel_kind == "dm":
            return "DMs"
        return self.guild_name or self.channel_name or "server"

    @property
    def speaker_label(self) -> str:
        if self.is_direct:
            return self.author_name
        return self.author_display_name or self.author_name


@dataclass(slots=True)
class ChannelBuffer:
    messages: list[IncomingMessage] = field(default_factory=list)
    timer: asyncio.Task[None] | None = None


class PlatformGateway(Protocol):
    """The messaging-platform operations the runtime relies on."""

    @property
    def self_user_id(self) -> str: ...

    @property
    def self_username(self) -> str: ...

    async def send(self, channel_id: str, text: str) -> None: ...

    async def reply(self, message: IncomingMessage, text: str) -> None: ...

    async def typing(self, channel_id: str) -> None: ...

    async def fetch_channel_exists(self, channel_id: str) -> bool: ...

    async def fetch_message(self, channel_id: str, message_id: str) -> IncomingMessage: ...

    async def fetch_message_author_id(self, channel_id: str, message_id: str) -> str | None: ...
