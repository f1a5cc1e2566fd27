from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

import discord

from .config import PersonaConfig, Settings, load_personas
from .discord.client import PersonaDiscordBot
from .memory.store import MemoryStore
from .runtime.console import run_console
from .services.gemini_client import GeminiClient
from .services.key_rotation import ApiKeyRing

logger = logging.getLogger("persona_bot")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord").setLevel(logging.WARNING)
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)


def build_bot(settings: Settings, persona: PersonaConfig, memory: MemoryStore) -> PersonaDiscordBot:
    keys = ApiKeyRing(settings.gemini_api_keys, owner=persona.name)
    llm = GeminiClient(
        api_key=keys.current,
        model=settings.gemini_model,
        timeout_seconds=settings.gemini_timeout_seconds,
        temperature=settings.gemini_chat_temperature,
        max_output_tokens=settings.gemini_chat_max_output_tokens,
        base_url=settings.gemini_base_url,
    )
    return PersonaDiscordBot(settings=settings, persona=persona, memory=memory, llm=llm, keys=keys)


async def _run_bot(bot: PersonaDiscordBot, token: str) -> None:
    try:
        async with bot:
            await bot.start(token)
    except discord.LoginFailure as exc:
        logger.error("[%s] Login failed: %s", bot.name, exc)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


async def _run(settings: Settings, personas: list[PersonaConfig]) -> int:
    memory = MemoryStore(settings.sqlite_path)
    try:
        await memory.init()
    except Exception:
        logger.exception("Failed to initialize memory database at %s", settings.sqlite_path)
        return 1

    bots: list[tuple[PersonaDiscordBot, str]] = []
    for persona in personas:
        token = persona.resolve_token()
        if not token:
            logger.warning("[%s] %s is empty; persona skipped.", persona.name, persona.token_env)
            continue
        bots.append((build_bot(settings, persona, memory), token))

    if not bots:
        logger.error("No persona could start: no platform tokens configured.")
        return 1

    logger.info("Starting %s persona(s): %s", len(bots), ", ".join(bot.name for bot, _ in bots))
    console_task = asyncio.create_task(run_console([bot for bot, _ in bots]), name="console")
    try:
        await asyncio.gather(*(_run_bot(bot, token) for bot, token in bots))
    finally:
        console_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await console_task
    return 0


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    try:
        settings.validate()
        personas = load_personas(settings.personas_json_path)
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)

    try:
        code = asyncio.run(_run(settings, personas))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
        code = 0
    sys.exit(code)
