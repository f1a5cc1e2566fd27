from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.common import ChatMessage  # noqa: E402
from persona_bot.prompts.json_loader import load_prompt_json  # noqa: E402
from persona_bot.prompts.persona import (  # noqa: E402
    build_gossip_prompt,
    build_proactive_prompt,
    build_system_prompt,
)


def _chat(author: str, content: str) -> ChatMessage:
    return ChatMessage(channel_id="c1", author_id=author, author_name=author, content=content)


def test_system_prompt_renders_memory_relationships_and_history() -> None:
    prompt = build_system_prompt(
        base_prompt="  You are Kai.  ",
        location="DMs",
        display_name="alice",
        username="alice",
        global_memory=[{"content": "[GOSSIP] Mint adopted a cat"}],
        user_memory=[{"key": "age", "value": "18"}],
        facts=[{"topic": "home", "content": "Lisbon"}],
        relationships=[
            {"user_id_1": "alice", "user_id_2": "bot_Kai", "relationship_type": "crush", "description": "blushes"}
        ],
        other_conversations=[],
        history=[_chat("alice", "hi"), _chat("Kai", "hey")],
    )

    assert prompt.startswith("You are Kai.")
    assert "> [GOSSIP] Mint adopted a cat" in prompt
    assert "> age: 18" in prompt
    assert "> home: Lisbon" in prompt
    assert "> alice - crush - bot_Kai: blushes" in prompt
    assert "Other Conversations" not in prompt
    assert "[SPLIT]" in prompt
    assert prompt.endswith("alice: hi\nKai: hey")


def test_prompt_text_with_braces_is_not_interpreted() -> None:
    prompt = build_gossip_prompt("Kai", [_chat("alice", "my json is {\"a\": 1} lol")])

    assert '{"a": 1}' in prompt
    assert '"gossip": []' in prompt


def test_proactive_prompt_lists_gossip() -> None:
    prompt = build_proactive_prompt("Kai", "07:30", ["[GOSSIP] one", "[GOSSIP] two"])

    assert "It is currently 07:30" in prompt
    assert "- [GOSSIP] one\n- [GOSSIP] two" in prompt


def test_prompt_json_override_is_merged_over_defaults(tmp_path: Path) -> None:
    (tmp_path / "persona.json").write_text('{"greeting": "hey", "nested": {"b": 2}}', encoding="utf-8")

    merged = load_prompt_json("persona.json", {"greeting": "hi", "other": "x", "nested": {"a": 1}}, data_dir=tmp_path)

    assert merged == {"greeting": "hey", "other": "x", "nested": {"a": 1, "b": 2}}


def test_broken_prompt_json_falls_back_to_defaults(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    (tmp_path / "persona.json").write_text("{not json", encoding="utf-8")

    merged = load_prompt_json("persona.json", {"greeting": "hi"}, data_dir=tmp_path)

    assert merged == {"greeting": "hi"}
    assert "Failed to parse prompt JSON" in caplog.text
