from __future__ import annotations

import asyncio
import logging
import random

import discord

from ..config import PersonaConfig, Settings
from ..memory.short_term import ShortTermMemory
from ..memory.store import MemoryStore
from ..runtime.debounce import MessageDebouncer
from ..runtime.scheduler import AutonomyScheduler
from ..services.gemini_client import GeminiClient
from ..services.key_rotation import ApiKeyRing
from ..services.persona_ai import PersonaAI
from .gateway import DiscordGateway, to_incoming

logger = logging.getLogger("persona_bot")


class PersonaDiscordBot(discord.Client):
    """One persona: a Discord connection wired to its AI layer, debouncer and scheduler."""

    def __init__(
        self,
        settings: Settings,
        persona: PersonaConfig,
        memory: MemoryStore,
        llm: GeminiClient,
        keys: ApiKeyRing,
        short_term: ShortTermMemory | None = None,
        rng: random.Random | None = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = True

        super().__init__(intents=intents)

        self.settings = settings
        self.persona = persona
        self.memory = memory
        self.llm = llm
        self.short_term = short_term or ShortTermMemory(settings.short_term_history_cap)
        self.gateway = DiscordGateway(self)
        self.ai = PersonaAI(persona, memory, self.short_term, llm, keys, settings)
        self.debouncer = MessageDebouncer(
            persona,
            self.gateway,
            self.ai,
            self.short_term,
            quiet_ms=settings.debounce_quiet_ms,
            rng=rng,
        )
        self.scheduler = AutonomyScheduler(
            persona,
            self.gateway,
            self.ai,
            self.short_term,
            extraction_interval_minutes=settings.extraction_interval_minutes,
            extraction_window_minutes=settings.extraction_window_minutes,
            user_memory_offset_minutes=settings.user_memory_extraction_offset_minutes,
            proactive_quiet_minutes=settings.proactive_quiet_minutes,
            rng=rng,
        )

    @property
    def name(self) -> str:
        return self.persona.name

    async def setup_hook(self) -> None:
        await self.ai.start()

    async def close(self) -> None:
        await self._run_shutdown_step("scheduler.stop", self.scheduler.stop(), timeout=6.0)
        await self._run_shutdown_step("debouncer.close", self.debouncer.close(), timeout=6.0)
        await self._run_shutdown_step("ai.close", self.ai.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("[%s] Shutdown step timed out: %s", self.name, label)
        except Exception as exc:
            logger.warning("[%s] Shutdown step failed: %s (%s)", self.name, label, exc)

    async def on_ready(self) -> None:
        if self.user:
            logger.info("[%s] Online as %s (%s)", self.name, self.user, self.user.id)
        # on_ready fires again after reconnects; the scheduler starts once.
        self.scheduler.start()

    async def on_message(self, message: discord.Message) -> None:
        if self.user is not None and message.author.id == self.user.id:
            return
        try:
            await self.debouncer.on_incoming(to_incoming(message))
        except Exception:
            logger.exception("[%s] Failed to handle message %s", self.name, message.id)

    async def trigger(self, channel_id: str, message_id: str) -> bool:
        """Process a stored message as if it just arrived, skipping eligibility checks."""
        incoming = await self.gateway.fetch_message(channel_id, message_id)
        return await self.debouncer.on_incoming(incoming, force=True)
