from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

from .common import read_text_with_fallback


load_dotenv()

GEMINI_API_KEY_PREFIX = "GEMINI_API_KEY"


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def load_gemini_api_keys(environ: Mapping[str, str] | None = None) -> tuple[str, ...]:
    source = os.environ if environ is None else environ
    keys: list[str] = []
    for name in sorted(source, key=lambda item: item.lstrip("\ufeff")):
        if not name.lstrip("\ufeff").startswith(GEMINI_API_KEY_PREFIX):
            continue
        value = (source.get(name) or "").strip()
        if value:
            keys.append(value)
    return tuple(keys)


@dataclass(frozen=True, slots=True)
class DelayRange:
    min_ms: int
    max_ms: int


@dataclass(frozen=True, slots=True)
class AutonomyConfig:
    enabled: bool = False
    target_channels: tuple[str, ...] = ()
    interval_minutes: float = 60.0
    chance: float = 0.1


@dataclass(frozen=True, slots=True)
class PersonaConfig:
    name: str
    base_prompt: str
    token_env: str = "DISCORD_TOKEN"
    always_reply: bool = True
    use_reply_format: bool = False
    reply_delay: DelayRange = DelayRange(1000, 2000)
    typing_delay: DelayRange = DelayRange(500, 3000)
    allowed_dms: frozenset[str] = frozenset()
    allowed_servers: frozenset[str] = frozenset()
    autonomy: AutonomyConfig = field(default_factory=AutonomyConfig)

    def resolve_token(self) -> str:
        return _clean_token(_env_lookup(self.token_env) or "")


def _require_str(payload: Mapping[str, Any], key: str, where: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{where}: '{key}' must be a non-empty string")
    return value.strip()


def _optional_bool(payload: Mapping[str, Any], key: str, default: bool, where: str) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{where}: '{key}' must be true or false")
    return value


def _id_set(payload: Mapping[str, Any], key: str, where: str) -> frozenset[str]:
    value = payload.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{where}: '{key}' must be a list of ids")
    result: set[str] = set()
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise ValueError(f"{where}: '{key}' contains a non-id value: {item!r}")
        text = str(item).strip()
        if text:
            result.add(text)
    return frozenset(result)


def _delay_range(payload: Mapping[str, Any], key: str, default: DelayRange, where: str) -> DelayRange:
    raw = payload.get(key)
    if raw is None:
        return default
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: '{key}' must be an object with min_ms/max_ms")
    low = raw.get("min_ms", raw.get("min", default.min_ms))
    high = raw.get("max_ms", raw.get("max", default.max_ms))
    if isinstance(low, bool) or isinstance(high, bool) or not isinstance(low, int) or not isinstance(high, int):
        raise ValueError(f"{where}: '{key}' bounds must be integers (milliseconds)")
    if low < 0 or high < low:
        raise ValueError(f"{where}: '{key}' must satisfy 0 <= min_ms <= max_ms")
    return DelayRange(low, high)


def _autonomy(payload: Mapping[str, Any], where: str) -> AutonomyConfig:
    raw = payload.get("autonomy")
    if raw is None:
        return AutonomyConfig()
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: 'autonomy' must be an object")

    enabled = _optional_bool(raw, "enabled", False, f"{where} autonomy")
    channels_raw = raw.get("target_channels") or []
    if not isinstance(channels_raw, list):
        raise ValueError(f"{where}: 'autonomy.target_channels' must be a list")
    channels = tuple(str(item).strip() for item in channels_raw if str(item).strip())

    interval = raw.get("interval_minutes", 60)
    chance = raw.get("chance", 0.1)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise ValueError(f"{where}: 'autonomy.interval_minutes' must be > 0")
    if isinstance(chance, bool) or not isinstance(chance, (int, float)) or not 0.0 <= float(chance) <= 1.0:
        raise ValueError(f"{where}: 'autonomy.chance' must be in [0, 1]")
    if enabled and not channels:
        raise ValueError(f"{where}: enabled autonomy needs at least one target channel")

    return AutonomyConfig(
        enabled=enabled,
        target_channels=channels,
        interval_minutes=float(interval),
        chance=float(chance),
    )


def persona_from_payload(payload: Any, *, base_dir: Path, index: int = 0) -> PersonaConfig:
    where = f"Persona #{index + 1}"
    if not isinstance(payload, dict):
        raise ValueError(f"{where}: entry must be an object")

    name = _require_str(payload, "name", where)
    where = f"Persona '{name}'"

    base_prompt = str(payload.get("base_prompt") or "").strip()
    prompt_file = str(payload.get("base_prompt_file") or "").strip()
    if not base_prompt and prompt_file:
        path = Path(prompt_file).expanduser()
        if not path.is_absolute():
            path = base_dir / path
        try:
            base_prompt = read_text_with_fallback(path).strip()
        except OSError as exc:
            raise ValueError(f"{where}: cannot read base_prompt_file {path} ({exc})") from exc
    if not base_prompt:
        raise ValueError(f"{where}: 'base_prompt' or 'base_prompt_file' is required")

    return PersonaConfig(
        name=name,
        base_prompt=base_prompt,
        token_env=str(payload.get("token_env") or "DISCORD_TOKEN").strip(),
        always_reply=_optional_bool(payload, "always_reply", True, where),
        use_reply_format=_optional_bool(payload, "use_reply_format", False, where),
        reply_delay=_delay_range(payload, "reply_delay", DelayRange(1000, 2000), where),
        typing_delay=_delay_range(payload, "typing_delay", DelayRange(500, 3000), where),
        allowed_dms=_id_set(payload, "allowed_dms", where),
        allowed_servers=_id_set(payload, "allowed_servers", where),
        autonomy=_autonomy(payload, where),
    )


def load_personas(path: Path) -> list[PersonaConfig]:
    if not path.exists():
        raise ValueError(f"Persona config not found: {path}")
    try:
        payload = json.loads(read_text_with_fallback(path))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Persona config is not valid JSON: {path} ({exc})") from exc

    if isinstance(payload, dict):
        payload = payload.get("personas")
    if not isinstance(payload, list) or not payload:
        raise ValueError(f"Persona config must hold a non-empty list of personas: {path}")

    personas = [persona_from_payload(item, base_dir=path.parent, index=i) for i, item in enumerate(payload)]
    names = [persona.name.casefold() for persona in personas]
    if len(set(names)) != len(names):
        raise ValueError("Persona names must be unique")
    return personas


@dataclass(slots=True)
class Settings:
    sqlite_path: Path
    personas_json_path: Path

    gemini_api_keys: tuple[str, ...]
    gemini_base_url: str
    gemini_model: str
    gemini_timeout_seconds: int
    gemini_chat_temperature: float
    gemini_chat_max_output_tokens: int
    gemini_memory_temperature: float

    short_term_history_cap: int
    debounce_quiet_ms: int

    extraction_interval_minutes: float
    extraction_window_minutes: float
    user_memory_extraction_offset_minutes: float
    proactive_quiet_minutes: float

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/memory.db")).expanduser(),
            personas_json_path=Path(_env_str("PERSONAS_JSON_PATH", "./config/personas.json")).expanduser(),
            gemini_api_keys=load_gemini_api_keys(),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_timeout_seconds=_env_int("GEMINI_TIMEOUT_SECONDS", 90),
            gemini_chat_temperature=_env_float("GEMINI_CHAT_TEMPERATURE", 1.1),
            gemini_chat_max_output_tokens=_env_int("GEMINI_CHAT_MAX_OUTPUT_TOKENS", 4000),
            gemini_memory_temperature=_env_float("GEMINI_MEMORY_TEMPERATURE", 0.1),
            short_term_history_cap=_env_int("SHORT_TERM_HISTORY_CAP", 50, aliases=("MAX_RECENT_MESSAGES",)),
            debounce_quiet_ms=_env_int("DEBOUNCE_QUIET_MS", 2500),
            extraction_interval_minutes=_env_float("EXTRACTION_INTERVAL_MINUTES", 10.0),
            extraction_window_minutes=_env_float("EXTRACTION_WINDOW_MINUTES", 10.0),
            user_memory_extraction_offset_minutes=_env_float("USER_MEMORY_EXTRACTION_OFFSET_MINUTES", 5.0),
            proactive_quiet_minutes=_env_float("PROACTIVE_QUIET_MINUTES", 5.0),
        )

    def validate(self) -> None:
        if self.gemini_timeout_seconds < 5:
            raise ValueError("GEMINI_TIMEOUT_SECONDS must be >= 5")
        if self.gemini_chat_max_output_tokens < 0:
            raise ValueError("GEMINI_CHAT_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")
        if not 0.0 <= self.gemini_chat_temperature <= 2.0:
            raise ValueError("GEMINI_CHAT_TEMPERATURE must be in [0, 2]")
        if not 0.0 <= self.gemini_memory_temperature <= 2.0:
            raise ValueError("GEMINI_MEMORY_TEMPERATURE must be in [0, 2]")
        if not self.gemini_model:
            raise ValueError("GEMINI_MODEL cannot be empty")

        if self.short_term_history_cap < 1:
            raise ValueError("SHORT_TERM_HISTORY_CAP must be >= 1")
        if self.debounce_quiet_ms < 0:
            raise ValueError("DEBOUNCE_QUIET_MS must be >= 0")

        if self.extraction_interval_minutes <= 0:
            raise ValueError("EXTRACTION_INTERVAL_MINUTES must be > 0")
        if self.extraction_window_minutes <= 0:
            raise ValueError("EXTRACTION_WINDOW_MINUTES must be > 0")
        if self.user_memory_extraction_offset_minutes < 0:
            raise ValueError("USER_MEMORY_EXTRACTION_OFFSET_MINUTES must be >= 0")
        if self.proactive_quiet_minutes < 0:
            raise ValueError("PROACTIVE_QUIET_MINUTES must be >= 0")
