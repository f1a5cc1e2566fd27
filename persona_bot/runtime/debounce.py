from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Coroutine

from ..common import (
    ROLE_MODEL,
    ROLE_USER,
    SPLIT_TOKEN,
    ChannelBuffer,
    ChatMessage,
    IncomingMessage,
    PlatformGateway,
    join_split_parts,
    truncate,
    uniform_delay_seconds,
)
from ..config import PersonaConfig

logger = logging.getLogger("persona_bot")

SleepFn = Callable[[float], Awaitable[Any]]


class MessageDebouncer:
    """Collapses bursts of eligible messages per channel into one reply.

    A channel's buffer lives from its first eligible message until the flush
    timer fires. Every new eligible message restarts that timer, so the reply is
    generated only after ``quiet_ms`` without new traffic.
    """

    def __init__(
        self,
        persona: PersonaConfig,
        gateway: PlatformGateway,
        ai: Any,
        short_term: Any,
        *,
        quiet_ms: int = 2500,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.persona = persona
        self.gateway = gateway
        self.ai = ai
        self.short_term = short_term
        self.quiet_seconds = max(0, int(quiet_ms)) / 1000.0
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._buffers: dict[str, ChannelBuffer] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def name(self) -> str:
        return self.persona.name

    def has_buffer(self, channel_id: str) -> bool:
        return channel_id in self._buffers

    def _spawn(self, coro: Coroutine[Any, Any, None], label: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{self.name}-{label}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] Background task %s failed: %s", self.name, task.get_name(), exc, exc_info=exc)

    def _passes_allow_lists(self, message: IncomingMessage) -> bool:
        if message.is_direct:
            return not self.persona.allowed_dms or message.author_id in self.persona.allowed_dms
        if self.persona.allowed_servers and message.guild_id is not None:
            return message.guild_id in self.persona.allowed_servers
        return True

    async def _is_reply_to_self(self, message: IncomingMessage) -> bool:
        if not message.reply_to_message_id:
            return False
        try:
            author_id = await self.gateway.fetch_message_author_id(message.channel_id, message.reply_to_message_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("[%s] Could not fetch referenced message %s: %s", self.name, message.reply_to_message_id, exc)
            return False
        return author_id is not None and author_id == self.gateway.self_user_id

    async def on_incoming(self, message: IncomingMessage, force: bool = False) -> bool:
        """Record ``message`` and buffer it when the persona should answer.

        Returns True when the message was added to a channel buffer.
        """
        if message.author_id == self.gateway.self_user_id:
            return False
        if not self._passes_allow_lists(message):
            return False

        # Admission is serialized per channel so buffers keep arrival order even
        # when an eligibility check suspends.
        channel_id = message.channel_id
        lock = self._locks.get(channel_id)
        if lock is None:
            lock = self._locks[channel_id] = asyncio.Lock()
        self._lock_users[channel_id] = self._lock_users.get(channel_id, 0) + 1
        try:
            async with lock:
                return await self._admit(message, force)
        finally:
            remaining = self._lock_users[channel_id] - 1
            if remaining:
                self._lock_users[channel_id] = remaining
            else:
                del self._lock_users[channel_id]
                self._locks.pop(channel_id, None)

    async def _admit(self, message: IncomingMessage, force: bool) -> bool:
        channel_id = message.channel_id
        self.short_term.record(
            channel_id,
            ChatMessage(
                channel_id=channel_id,
                author_id=message.author_id,
                author_name=message.author_name,
                content=message.content,
                role=ROLE_USER,
                message_id=message.message_id,
            ),
        )

        should_reply = message.is_direct or self.gateway.self_user_id in message.mentioned_user_ids
        if not should_reply:
            should_reply = await self._is_reply_to_self(message)
        if not (should_reply or force):
            return False

        if not self.persona.always_reply and not force:
            wants = await self.ai.decide_should_reply(
                message.author_name,
                message.content,
                self.short_term.recent(channel_id),
            )
            if not wants:
                logger.debug("[%s] Chose not to reply in %s", self.name, channel_id)
                return False

        self._buffer(message)
        return True

    def _buffer(self, message: IncomingMessage) -> None:
        channel_id = message.channel_id
        buffer = self._buffers.get(channel_id)
        if buffer is None:
            buffer = ChannelBuffer(messages=[message])
            self._buffers[channel_id] = buffer
            buffer.timer = self._spawn(self._flush_when_quiet(channel_id), f"flush-{channel_id}")
            self._spawn(self._typing_after_delay(channel_id), f"typing-{channel_id}")
            return

        if buffer.timer is not None and not buffer.timer.done():
            buffer.timer.cancel()
        buffer.messages.append(message)
        buffer.timer = self._spawn(self._flush_when_quiet(channel_id), f"flush-{channel_id}")

    async def _flush_when_quiet(self, channel_id: str) -> None:
        await self._sleep(self.quiet_seconds)
        await self.flush(channel_id)

    async def _typing_after_delay(self, channel_id: str) -> None:
        delay = self.persona.typing_delay
        await self._sleep(uniform_delay_seconds(self._rng, delay.min_ms, delay.max_ms))
        try:
            await self.gateway.typing(channel_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("[%s] Typing signal failed in %s: %s", self.name, channel_id, exc)

    async def flush(self, channel_id: str) -> None:
        buffer = self._buffers.pop(channel_id, None)
        if buffer is None or not buffer.messages:
            return
        if buffer.timer is not None and buffer.timer is not asyncio.current_task():
            buffer.timer.cancel()

        anchor = buffer.messages[-1]
        logger.info("[%s] Replying to %s msg(s) in %s", self.name, len(buffer.messages), channel_id)

        response = await self.ai.generate_response(
            anchor.speaker_label,
            anchor.author_name,
            anchor.author_id,
            self.short_term.recent(channel_id),
            anchor.location_label,
        )
        if not response:
            return

        parts = [part.strip() for part in response.split(SPLIT_TOKEN)]
        parts = [part for part in parts if part]
        delay = self.persona.reply_delay
        for index, part in enumerate(parts):
            if index > 0:
                await self._sleep(uniform_delay_seconds(self._rng, delay.min_ms, delay.max_ms))
            await self._send_part(anchor, part, as_reply=self.persona.use_reply_format and index == 0)

        self.short_term.record(
            channel_id,
            ChatMessage(
                channel_id=channel_id,
                author_id=self.gateway.self_user_id,
                author_name=self.name,
                content=join_split_parts(response).strip(),
                role=ROLE_MODEL,
                message_id=f"generated-{int(self._clock() * 1000)}",
            ),
        )
        logger.info("[%s] Sent in %s: \"%s\"", self.name, channel_id, truncate(join_split_parts(response), 120))

    async def _send_part(self, anchor: IncomingMessage, text: str, *, as_reply: bool) -> bool:
        if as_reply:
            try:
                await self.gateway.reply(anchor, text)
                return True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("[%s] Reply failed in %s (%s); sending as a plain message", self.name, anchor.channel_id, exc)
        try:
            await self.gateway.send(anchor.channel_id, text)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[%s] Send failed in %s: %s", self.name, anchor.channel_id, exc)
            return False

    async def drain(self) -> None:
        """Wait until every pending timer and flush has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._buffers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
