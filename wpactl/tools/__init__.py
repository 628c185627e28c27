"""Process and polling helpers."""

from .polling import poll_until
from .proc_utils import CommandResult, CommandRunner, run_best_effort, run_command, terminate_process

__all__ = [
    "CommandResult",
    "CommandRunner",
    "poll_until",
    "run_best_effort",
    "run_command",
    "terminate_process",
]
