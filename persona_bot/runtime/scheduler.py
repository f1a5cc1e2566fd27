from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..common import ROLE_MODEL, ChatMessage, PlatformGateway, truncate
from ..config import PersonaConfig

logger = logging.getLogger("persona_bot")

SleepFn = Callable[[float], Awaitable[Any]]


class AutonomyScheduler:
    """Periodic extraction jobs and the opt-in proactive messaging loop for one persona."""

    def __init__(
        self,
        persona: PersonaConfig,
        gateway: PlatformGateway,
        ai: Any,
        short_term: Any,
        *,
        extraction_interval_minutes: float = 10.0,
        extraction_window_minutes: float = 10.0,
        user_memory_offset_minutes: float = 5.0,
        proactive_quiet_minutes: float = 5.0,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.persona = persona
        self.gateway = gateway
        self.ai = ai
        self.short_term = short_term
        self.extraction_interval_seconds = extraction_interval_minutes * 60.0
        self.extraction_window_minutes = extraction_window_minutes
        self.user_memory_offset_seconds = user_memory_offset_minutes * 60.0
        self.proactive_quiet_seconds = proactive_quiet_minutes * 60.0
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._now = now
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def name(self) -> str:
        return self.persona.name

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks.append(
            asyncio.create_task(
                self._periodic("Gossip extraction", self.run_gossip_extraction, self.extraction_interval_seconds),
                name=f"{self.name}-gossip",
            )
        )
        self._tasks.append(
            asyncio.create_task(
                self._periodic(
                    "Memory extraction",
                    self.run_user_memory_extraction,
                    self.extraction_interval_seconds,
                    initial_delay=self.user_memory_offset_seconds,
                ),
                name=f"{self.name}-user-memory",
            )
        )
        autonomy = self.persona.autonomy
        if autonomy.enabled and autonomy.target_channels:
            logger.info("[%s] Autonomy enabled. Checking every %sm.", self.name, autonomy.interval_minutes)
            self._tasks.append(
                asyncio.create_task(
                    self._periodic("Proactive check", self.proactive_tick, autonomy.interval_minutes * 60.0),
                    name=f"{self.name}-proactive",
                )
            )
        logger.info("[%s] Background tasks started.", self.name)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _periodic(
        self,
        label: str,
        job: Callable[[], Awaitable[object]],
        interval: float,
        *,
        initial_delay: float = 0.0,
    ) -> None:
        if initial_delay > 0:
            await self._sleep(initial_delay)
        while True:
            await self._sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[%s] %s failed", self.name, label)

    async def run_gossip_extraction(self) -> None:
        messages = self.short_term.since(self.extraction_window_minutes)
        if not messages:
            return
        logger.debug("[%s] Processing gossip over %s message(s)", self.name, len(messages))
        await self.ai.extract_gossip(messages)

    async def run_user_memory_extraction(self) -> None:
        messages = self.short_term.since(self.extraction_window_minutes)
        if not messages:
            return
        logger.debug("[%s] Processing memories over %s message(s)", self.name, len(messages))
        await self.ai.extract_user_memories(messages)

    async def proactive_tick(self) -> bool:
        """One firing of the proactive loop. Returns True when a message was sent."""
        autonomy = self.persona.autonomy
        if not autonomy.target_channels:
            return False
        if self._rng.random() >= autonomy.chance:
            return False

        channel_id = self._rng.choice(autonomy.target_channels)
        try:
            exists = await self.gateway.fetch_channel_exists(channel_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("[%s] Cannot fetch channel %s: %s", self.name, channel_id, exc)
            exists = False
        if not exists:
            return False

        last = self.short_term.last(channel_id)
        if last is not None and last.timestamp is not None:
            if self._clock() - last.timestamp < self.proactive_quiet_seconds:
                return False

        logger.info("[%s] Proactive check passed for %s", self.name, channel_id)
        text = await self.ai.generate_proactive_message(self._now().strftime("%H:%M"))
        if not text:
            return False

        try:
            await self.gateway.send(channel_id, text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[%s] Proactive send failed in %s: %s", self.name, channel_id, exc)
            return False

        self.short_term.record(
            channel_id,
            ChatMessage(
                channel_id=channel_id,
                author_id=self.gateway.self_user_id,
                author_name=self.name,
                content=text,
                role=ROLE_MODEL,
                message_id=f"proactive-{int(self._clock() * 1000)}",
            ),
        )
        logger.info("[%s] Proactive message in %s: \"%s\"", self.name, channel_id, truncate(text, 120))
        return True
