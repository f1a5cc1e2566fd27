from __future__ import annotations

import dataclasses
import time
from collections import deque
from typing import Callable, Deque, Dict, List

from ..common import ChatMessage


class ShortTermMemory:
    """Bounded per-channel history kept for the lifetime of the process.

    Each channel owns a FIFO of at most ``max_recent`` messages; the oldest entry is
    evicted first. Nothing here is persisted.
    """

    def __init__(self, max_recent: int = 50, clock: Callable[[], float] = time.time) -> None:
        self.max_recent = max(1, int(max_recent))
        self._clock = clock
        self._channels: Dict[str, Deque[ChatMessage]] = {}

    def record(self, channel_id: str, message: ChatMessage) -> ChatMessage:
        changes: dict[str, object] = {}
        if message.timestamp is None:
            changes["timestamp"] = self._clock()
        if message.channel_id != channel_id:
            changes["channel_id"] = channel_id
        stored = dataclasses.replace(message, **changes) if changes else message

        history = self._channels.get(channel_id)
        if history is None:
            history = deque(maxlen=self.max_recent)
            self._channels[channel_id] = history
        history.append(stored)
        return stored

    def recent(self, channel_id: str) -> List[ChatMessage]:
        return list(self._channels.get(channel_id, ()))

    def last(self, channel_id: str) -> ChatMessage | None:
        history = self._channels.get(channel_id)
        if not history:
            return None
        return history[-1]

    def recent_across_channels(self, limit: int = 10) -> List[ChatMessage]:
        # Channels are concatenated in first-seen order, not merged by timestamp.
        if limit <= 0:
            return []
        flattened: List[ChatMessage] = []
        for history in self._channels.values():
            flattened.extend(history)
        return flattened[-limit:]

    def since(self, minutes_ago: float) -> List[ChatMessage]:
        cutoff = self._clock() - minutes_ago * 60.0
        selected = [
            message
            for history in self._channels.values()
            for message in history
            if (message.timestamp or 0.0) >= cutoff
        ]
        return sorted(selected, key=lambda message: message.timestamp or 0.0)
