from .console import handle_console_line, parse_trigger_command, run_console
from .debounce import MessageDebouncer
from .scheduler import AutonomyScheduler

__all__ = [
    "AutonomyScheduler",
    "MessageDebouncer",
    "handle_console_line",
    "parse_trigger_command",
    "run_console",
]
