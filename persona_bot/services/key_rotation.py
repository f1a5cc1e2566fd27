from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger("persona_bot")


class ApiKeyRing:
    """Ordered credentials with a current position.

    An empty input degrades to a single blank slot so callers can treat every
    ring the same way; requests made with it fail fast on the backend side.
    """

    def __init__(self, keys: Iterable[str], owner: str = "") -> None:
        cleaned = [str(key).strip() for key in keys if str(key or "").strip()]
        if not cleaned:
            logger.warning("[%s] No Gemini API keys configured; requests will fail.", owner or "persona")
            cleaned = [""]
        self._keys: tuple[str, ...] = tuple(cleaned)
        self._index = 0

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> str:
        return self._keys[self._index]

    def advance(self) -> str:
        self._index = (self._index + 1) % len(self._keys)
        return self.current
