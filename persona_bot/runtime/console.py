from __future__ import annotations

import asyncio
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence, TextIO

logger = logging.getLogger("persona_bot")

TRIGGER_USAGE = "Usage: trigger <channelId> <messageId> [personaName]"
COMMANDS_HELP = "Commands:\n  " + TRIGGER_USAGE[len("Usage: "):]


class TriggerTarget(Protocol):
    @property
    def name(self) -> str: ...

    async def trigger(self, channel_id: str, message_id: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class TriggerCommand:
    channel_id: str
    message_id: str
    name_filter: str = ""


def parse_trigger_command(args: Sequence[str]) -> TriggerCommand:
    if len(args) < 2:
        raise ValueError(TRIGGER_USAGE)
    return TriggerCommand(
        channel_id=args[0],
        message_id=args[1],
        name_filter=" ".join(args[2:]).casefold(),
    )


def select_targets(targets: Sequence[TriggerTarget], name_filter: str) -> list[TriggerTarget]:
    if not name_filter:
        return list(targets)
    return [target for target in targets if name_filter in target.name.casefold()]


async def handle_console_line(
    line: str,
    targets: Sequence[TriggerTarget],
    output: Callable[[str], Any] = print,
) -> None:
    words = line.strip().split()
    if not words:
        return
    command, args = words[0].casefold(), words[1:]
    if command != "trigger":
        output(COMMANDS_HELP)
        return

    try:
        parsed = parse_trigger_command(args)
    except ValueError as exc:
        output(str(exc))
        return

    selected = select_targets(targets, parsed.name_filter)
    if not selected:
        output("No matching personas found.")
        return

    output(f"Triggering {len(selected)} persona(s)...")
    for target in selected:
        output(f"Processing with {target.name}...")
        try:
            buffered = await target.trigger(parsed.channel_id, parsed.message_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            output(f"Error ({target.name}): {exc}")
            continue
        if not buffered:
            output(f"{target.name} skipped message {parsed.message_id}")


def _pump_lines(loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[str | None]", stream: TextIO) -> None:
    try:
        for line in stream:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)
    except RuntimeError:
        # Event loop already closed during shutdown.
        return


async def run_console(
    targets: Sequence[TriggerTarget],
    *,
    stream: TextIO | None = None,
    output: Callable[[str], Any] = print,
) -> None:
    """Read operator commands from ``stream`` (stdin by default) until EOF."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    reader = threading.Thread(
        target=_pump_lines,
        args=(loop, queue, stream or sys.stdin),
        name="console-reader",
        daemon=True,
    )
    reader.start()
    logger.info("Console ready. %s", TRIGGER_USAGE)

    while True:
        line = await queue.get()
        if line is None:
            return
        try:
            await handle_console_line(line, targets, output)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Console command failed: %s", line.strip())
