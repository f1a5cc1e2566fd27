from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.config import (  # noqa: E402
    DelayRange,
    PersonaConfig,
    Settings,
    load_gemini_api_keys,
    load_personas,
)


def _write(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_api_keys_are_collected_by_prefix_in_name_order() -> None:
    environ = {
        "GEMINI_API_KEY_2": "second",
        "GEMINI_API_KEY": "first",
        "GEMINI_API_KEY_3": "   ",
        "OPENAI_API_KEY": "ignored",
    }

    assert load_gemini_api_keys(environ) == ("first", "second")
    assert load_gemini_api_keys({}) == ()


def test_load_personas_applies_defaults_and_reads_prompt_file(tmp_path: Path) -> None:
    (tmp_path / "prompts").mkdir()
    (tmp_path / "prompts" / "kai.txt").write_text("You are Kai.\n", encoding="utf-8")
    path = _write(
        tmp_path / "personas.json",
        {
            "personas": [
                {
                    "name": "Kai",
                    "base_prompt_file": "prompts/kai.txt",
                    "token_env": "KAI_TOKEN",
                    "always_reply": False,
                    "reply_delay": {"min": 200, "max": 400},
                    "allowed_servers": ["123", 456],
                    "autonomy": {"enabled": True, "target_channels": ["c1"], "interval_minutes": 30, "chance": 0.25},
                },
                {"name": "Mint", "base_prompt": "You are Mint."},
            ]
        },
    )

    kai, mint = load_personas(path)

    assert kai.base_prompt == "You are Kai."
    assert kai.always_reply is False
    assert kai.reply_delay == DelayRange(200, 400)
    assert kai.typing_delay == DelayRange(500, 3000)
    assert kai.allowed_servers == frozenset({"123", "456"})
    assert kai.autonomy.enabled is True
    assert kai.autonomy.target_channels == ("c1",)
    assert kai.autonomy.interval_minutes == 30.0
    assert mint.always_reply is True
    assert mint.use_reply_format is False
    assert mint.reply_delay == DelayRange(1000, 2000)
    assert mint.autonomy.enabled is False


@pytest.mark.parametrize(
    ("persona", "message"),
    [
        ({"name": "Kai"}, "base_prompt"),
        ({"name": "Kai", "base_prompt": "x", "reply_delay": {"min_ms": 500, "max_ms": 100}}, "reply_delay"),
        ({"name": "Kai", "base_prompt": "x", "autonomy": {"chance": 1.5}}, "chance"),
        ({"name": "Kai", "base_prompt": "x", "autonomy": {"interval_minutes": 0}}, "interval_minutes"),
        ({"name": "Kai", "base_prompt": "x", "autonomy": {"enabled": True}}, "target channel"),
        ({"name": "Kai", "base_prompt": "x", "always_reply": "yes"}, "always_reply"),
        ({"name": "Kai", "base_prompt": "x", "allowed_dms": "123"}, "allowed_dms"),
    ],
)
def test_invalid_persona_fields_are_rejected(tmp_path: Path, persona: dict, message: str) -> None:
    path = _write(tmp_path / "personas.json", [persona])

    with pytest.raises(ValueError, match=message):
        load_personas(path)


def test_duplicate_or_missing_personas_are_rejected(tmp_path: Path) -> None:
    dupes = _write(tmp_path / "dupes.json", [{"name": "Kai", "base_prompt": "a"}, {"name": "kai", "base_prompt": "b"}])
    empty = _write(tmp_path / "empty.json", {"personas": []})

    with pytest.raises(ValueError, match="unique"):
        load_personas(dupes)
    with pytest.raises(ValueError, match="non-empty"):
        load_personas(empty)
    with pytest.raises(ValueError, match="not found"):
        load_personas(tmp_path / "missing.json")


def test_resolve_token_strips_bot_prefix_and_quotes(monkeypatch: pytest.MonkeyPatch) -> None:
    persona = PersonaConfig(name="Kai", base_prompt="x", token_env="KAI_TOKEN")

    monkeypatch.setenv("KAI_TOKEN", 'Bot "abc.def"')
    assert persona.resolve_token() == "abc.def"

    monkeypatch.delenv("KAI_TOKEN")
    assert persona.resolve_token() == ""


def test_settings_from_env_reads_overrides_and_tolerates_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEBOUNCE_QUIET_MS", "1200")
    monkeypatch.setenv("SHORT_TERM_HISTORY_CAP", "not-a-number")
    monkeypatch.setenv("PROACTIVE_QUIET_MINUTES", "2.5")

    settings = Settings.from_env()
    settings.validate()

    assert settings.debounce_quiet_ms == 1200
    assert settings.short_term_history_cap == 50
    assert settings.proactive_quiet_minutes == 2.5
    assert settings.extraction_interval_minutes == 10.0
    assert settings.user_memory_extraction_offset_minutes == 5.0


def test_settings_validate_rejects_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXTRACTION_INTERVAL_MINUTES", "0")

    with pytest.raises(ValueError, match="EXTRACTION_INTERVAL_MINUTES"):
        Settings.from_env().validate()
