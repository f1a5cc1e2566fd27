from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from ..common import read_text_with_fallback

logger = logging.getLogger("persona_bot.prompts")

_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    return Path(__file__).with_name("data")


def _deep_merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def load_prompt_json(filename: str, defaults: dict[str, Any], data_dir: Path | None = None) -> dict[str, Any]:
    """Return ``defaults`` overridden by ``data/<filename>`` when that file exists.

    Results are cached per path and refreshed when the file's mtime changes.
    """
    path = (data_dir or _data_dir()) / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    if path.exists():
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    merged: Any = copy.deepcopy(defaults)
    if path.exists():
        try:
            payload = json.loads(read_text_with_fallback(path))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
            payload = None
        if isinstance(payload, dict):
            merged = _deep_merge(merged, payload)
        elif payload is not None:
            logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)

    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(merged))
    return merged
