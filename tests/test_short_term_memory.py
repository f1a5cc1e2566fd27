from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.common import ChatMessage  # noqa: E402
from persona_bot.memory.short_term import ShortTermMemory  # noqa: E402


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _msg(channel_id: str, content: str, message_id: str = "", timestamp: float | None = None) -> ChatMessage:
    return ChatMessage(
        channel_id=channel_id,
        author_id="u1",
        author_name="alice",
        content=content,
        message_id=message_id or content,
        timestamp=timestamp,
    )


def test_cap_evicts_oldest_first() -> None:
    memory = ShortTermMemory(max_recent=2)

    for content in ("A", "B", "C"):
        memory.record("c1", _msg("c1", content))

    assert [m.content for m in memory.recent("c1")] == ["B", "C"]


def test_history_never_exceeds_cap() -> None:
    memory = ShortTermMemory(max_recent=5)

    for index in range(6):
        memory.record("c1", _msg("c1", f"m{index}"))
        assert len(memory.recent("c1")) <= 5

    contents = [m.content for m in memory.recent("c1")]
    assert "m0" not in contents
    assert contents[-1] == "m5"


def test_record_assigns_timestamp_and_channel() -> None:
    clock = _Clock(42.0)
    memory = ShortTermMemory(max_recent=10, clock=clock)

    stored = memory.record("c9", _msg("other", "hello"))

    assert stored.timestamp == 42.0
    assert stored.channel_id == "c9"
    assert memory.last("c9") == stored

    explicit = memory.record("c9", _msg("c9", "later", timestamp=7.0))
    assert explicit.timestamp == 7.0


def test_recent_for_unknown_channel_is_empty() -> None:
    memory = ShortTermMemory()

    assert memory.recent("missing") == []
    assert memory.last("missing") is None


def test_recent_across_channels_concatenates_in_first_seen_channel_order() -> None:
    clock = _Clock()
    memory = ShortTermMemory(clock=clock)

    memory.record("c1", _msg("c1", "a1"))
    clock.now += 1
    memory.record("c2", _msg("c2", "b1"))
    clock.now += 1
    memory.record("c1", _msg("c1", "a2"))

    # c1's entries come first even though b1 is older than a2.
    assert [m.content for m in memory.recent_across_channels(10)] == ["a1", "a2", "b1"]
    assert [m.content for m in memory.recent_across_channels(2)] == ["a2", "b1"]
    assert memory.recent_across_channels(0) == []


def test_since_filters_by_cutoff_and_sorts_by_timestamp() -> None:
    clock = _Clock(10_000.0)
    memory = ShortTermMemory(clock=clock)

    memory.record("c1", _msg("c1", "old", timestamp=10_000.0 - 20 * 60))
    memory.record("c2", _msg("c2", "newer", timestamp=10_000.0 - 60))
    memory.record("c1", _msg("c1", "middle", timestamp=10_000.0 - 5 * 60))

    assert [m.content for m in memory.since(10)] == ["middle", "newer"]
