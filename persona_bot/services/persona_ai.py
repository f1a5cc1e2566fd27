from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from ..common import GOSSIP_MARKER, ROLE_MODEL, ChatMessage, truncate
from ..config import PersonaConfig
from ..prompts.persona import (
    build_gossip_prompt,
    build_proactive_prompt,
    build_should_reply_prompt,
    build_system_prompt,
    build_user_memories_prompt,
)
from .gemini_client import GeminiClient, is_rate_limit_error
from .key_rotation import ApiKeyRing

logger = logging.getLogger("persona_bot")

T = TypeVar("T")

HISTORY_KEEP_RECENT = 30
CROSS_CHANNEL_CONTEXT = 5
EXTRACTION_MIN_MESSAGES = 3
PROACTIVE_GOSSIP_LIMIT = 10


def truncate_history(history: Sequence[ChatMessage], persona_name: str, keep: int = HISTORY_KEEP_RECENT) -> list[ChatMessage]:
    """Keep the last ``keep`` entries plus the persona's own older lines."""
    items = list(history)
    if len(items) <= keep:
        return items
    needle = persona_name.casefold()
    older = [message for message in items[:-keep] if needle in message.author_name.casefold()]
    return older + items[-keep:]


def synthetic_persona_id(persona_name: str) -> str:
    return f"bot_{persona_name}"


class PersonaAI:
    """Prompt assembly and backend calls for one persona.

    Every public operation returns a usable value. Quota errors rotate the API key
    and retry, at most once per configured key; anything else is logged and the
    operation's default is returned.
    """

    def __init__(
        self,
        persona: PersonaConfig,
        memory: Any,
        short_term: Any,
        llm: GeminiClient | Any,
        keys: ApiKeyRing,
        settings: Any = None,
    ) -> None:
        self.persona = persona
        self.memory = memory
        self.short_term = short_term
        self.llm = llm
        self.keys = keys
        self.chat_temperature = float(getattr(settings, "gemini_chat_temperature", 1.1))
        self.chat_max_output_tokens = int(getattr(settings, "gemini_chat_max_output_tokens", 4000))
        self.memory_temperature = float(getattr(settings, "gemini_memory_temperature", 0.1))

    @property
    def name(self) -> str:
        return self.persona.name

    async def start(self) -> None:
        start_fn = getattr(self.llm, "start", None)
        if callable(start_fn):
            await start_fn()

    async def close(self) -> None:
        close_fn = getattr(self.llm, "close", None)
        if callable(close_fn):
            await close_fn()

    def _rotate_key(self) -> None:
        key = self.keys.advance()
        self.llm.set_api_key(key)
        logger.info("[%s] Switching API key (%s/%s)", self.name, self.keys.index + 1, len(self.keys))

    async def _call_with_rotation(self, label: str, operation: Callable[[], Awaitable[T]], default: T) -> T:
        attempts = 0
        while attempts < len(self.keys):
            attempts += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if is_rate_limit_error(exc):
                    self._rotate_key()
                    continue
                logger.warning("[%s] %s failed: %s", self.name, label, exc)
                return default
        logger.warning("[%s] %s gave up: all %s API keys are rate limited", self.name, label, len(self.keys))
        return default

    async def _chat(self, prompt: str) -> str:
        return await self.llm.generate(
            prompt,
            temperature=self.chat_temperature,
            max_output_tokens=self.chat_max_output_tokens,
            permissive_safety=True,
        )

    async def _extract(self, prompt: str) -> str:
        return await self.llm.generate(prompt, temperature=self.memory_temperature)

    async def decide_should_reply(self, speaker_name: str, content: str, recent_history: Sequence[ChatMessage]) -> bool:
        async def _ask() -> bool:
            prompt = build_should_reply_prompt(self.name, content, recent_history)
            answer = (await self._chat(prompt)).strip().upper()
            logger.debug("[%s] shouldReply for %s -> %s", self.name, speaker_name, answer)
            return "YES" in answer

        return await self._call_with_rotation("shouldReply", _ask, True)

    async def generate_response(
        self,
        display_name: str,
        username: str,
        user_id: str,
        history: Sequence[ChatMessage],
        location_label: str,
    ) -> str:
        async def _compose() -> str:
            user_memory, global_memory, facts, relationships = await asyncio.gather(
                self.memory.get_user_memory(self.name, user_id),
                self.memory.get_global(self.name),
                self.memory.get_facts(self.name),
                self.memory.get_relationships(self.name, user_id),
            )
            selected = truncate_history(history, self.name)
            seen_ids = {message.message_id for message in history if message.message_id}
            other = [
                message
                for message in self.short_term.recent_across_channels(CROSS_CHANNEL_CONTEXT)
                if ((message.message_id not in seen_ids) if message.message_id else (message not in history))
            ]
            prompt = build_system_prompt(
                base_prompt=self.persona.base_prompt,
                location=location_label,
                display_name=display_name,
                username=username,
                global_memory=global_memory,
                user_memory=user_memory,
                facts=facts,
                relationships=relationships,
                other_conversations=other,
                history=selected,
            )
            text = await self._chat(prompt)
            if not text:
                logger.warning("[%s] Empty response for %s in %s", self.name, username, location_label)
            return text

        return await self._call_with_rotation("generateResponse", _compose, "")

    async def extract_gossip(self, conversations: Sequence[ChatMessage]) -> int:
        if len(conversations) < EXTRACTION_MIN_MESSAGES:
            return 0

        async def _run() -> int:
            data = self.parse_lenient_json(await self._extract(build_gossip_prompt(self.name, conversations)))
            items = data.get("gossip") or []
            if not isinstance(items, list):
                return 0
            stored = 0
            for fact in items:
                text = str(fact or "").strip()
                if not text:
                    continue
                await self.memory.add_global(self.name, f"{GOSSIP_MARKER} {text}")
                logger.info("[%s] Gossip: %s", self.name, truncate(text, 160))
                stored += 1
            return stored

        return await self._call_with_rotation("Gossip extraction", _run, 0)

    async def extract_user_memories(self, conversations: Sequence[ChatMessage]) -> tuple[int, int]:
        if len(conversations) < EXTRACTION_MIN_MESSAGES:
            return (0, 0)

        own_ids = {message.author_id for message in conversations if message.role == ROLE_MODEL and message.author_id}

        def _identity(raw: Any) -> str:
            value = str(raw or "").strip()
            if value.casefold() == self.name.casefold() or value in own_ids:
                return synthetic_persona_id(self.name)
            return value

        async def _run() -> tuple[int, int]:
            data = self.parse_lenient_json(await self._extract(build_user_memories_prompt(self.name, conversations)))
            facts_written = 0
            for row in data.get("user_facts") or []:
                if not isinstance(row, dict):
                    continue
                user_id = str(row.get("user_id") or "").strip()
                key = str(row.get("key") or "").strip()
                value = str(row.get("value") or "").strip()
                if not (user_id and key and value):
                    continue
                await self.memory.set_user_memory(self.name, user_id, key, value)
                logger.debug("[%s] Fact: %s -> %s", self.name, user_id, key)
                facts_written += 1

            links_written = 0
            for row in data.get("relationships") or []:
                if not isinstance(row, dict):
                    continue
                first = _identity(row.get("user_id_1"))
                second = _identity(row.get("user_id_2"))
                kind = str(row.get("type") or "").strip()
                if not (first and second and kind):
                    continue
                await self.memory.add_relationship(
                    self.name,
                    first,
                    second,
                    kind,
                    str(row.get("description") or "").strip(),
                )
                links_written += 1
            return (facts_written, links_written)

        return await self._call_with_rotation("Memory extraction", _run, (0, 0))

    async def generate_proactive_message(self, time_label: str) -> str | None:
        async def _run() -> str | None:
            rows = await self.memory.get_global(self.name)
            gossip = [row["content"] for row in rows if GOSSIP_MARKER in row.get("content", "")]
            prompt = build_proactive_prompt(self.name, time_label, gossip[:PROACTIVE_GOSSIP_LIMIT])
            text = (await self._chat(prompt)).strip()
            if not text or text.upper() == "NO":
                return None
            return text

        return await self._call_with_rotation("Proactive message", _run, None)

    @staticmethod
    def parse_lenient_json(text: str) -> dict[str, Any]:
        cleaned = GeminiClient.strip_json_fences(text)
        if not cleaned:
            return {}
        try:
            data = json.loads(cleaned)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
