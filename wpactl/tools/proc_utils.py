"""
Async helpers for running the command line tools wpactl drives.

Every component shells out through a `runner` with the signature of
`run_command`, so tests can substitute a scripted fake.

Usage:
    result = await run_command(["ip", "link", "set", "wlan0", "up"], timeout=5.0)
    if not result.ok:
        logger.warning("ip failed: %s", result.stderr)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 10.0


@dataclass
class CommandResult:
    """Captured outcome of one command."""

    args: list[str] = field(default_factory=list)
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stderr when present, otherwise stdout, stripped."""
        return (self.stderr or self.stdout).strip()


class CommandRunner(Protocol):
    def __call__(
        self,
        args: Sequence[str],
        *,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        sudo: bool = False,
    ) -> Awaitable[CommandResult]: ...


async def run_command(
    args: Sequence[str],
    *,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    sudo: bool = False,
) -> CommandResult:
    """
    Run a command and capture its output.

    A missing binary returns returncode 127 with the OS error as stderr. A
    command that outlives `timeout` is killed and returns returncode -1.
    """
    cmd = ["sudo", *args] if sudo else list(args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.debug("Cannot run %s: %s", cmd[0], e)
        return CommandResult(cmd, 127, "", str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        logger.warning("Command timed out after %.1fs: %s", timeout, " ".join(cmd))
        return CommandResult(cmd, -1, "", f"timed out after {timeout:g}s")

    return CommandResult(
        cmd,
        proc.returncode if proc.returncode is not None else -1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def run_best_effort(
    runner: CommandRunner,
    args: Sequence[str],
    *,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    sudo: bool = False,
) -> CommandResult | None:
    """Run a cleanup command, logging instead of raising on any failure."""
    try:
        result = await runner(args, timeout=timeout, sudo=sudo)
    except Exception as e:
        logger.debug("Best-effort command %s raised: %s", " ".join(args), e)
        return None
    if not result.ok:
        logger.debug("Best-effort command %s exited %d: %s", " ".join(args), result.returncode, result.output)
    return result


async def terminate_process(proc: asyncio.subprocess.Process, grace: float = 5.0) -> None:
    """Terminate a child, killing it if it ignores SIGTERM for `grace` seconds."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except ProcessLookupError:
        return
    except asyncio.TimeoutError:
        logger.warning("PID %s ignored SIGTERM, killing", proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


def process_pattern(binary: str, *parts: str) -> str:
    """
    `pgrep -f`/`pkill -f` regex for `binary` followed by `parts`.

    The first letter of the binary name is written as a bracket expression,
    so the pattern never matches the pkill command line carrying it, nor the
    sudo process wrapping that pkill.
    """
    name = Path(binary).name
    head = f"[{re.escape(name[0])}]{re.escape(name[1:])}"
    return ".*".join([head, *parts])


def find_processes(binary: str, match: Callable[[list[str]], bool]) -> list[int]:
    """
    PIDs of processes executing `binary` whose arguments satisfy `match`.

    Only argv[0] is compared against the binary, so wrappers that merely
    mention it (sudo, pgrep, a shell) are never reported.
    """
    name = Path(binary).name
    pids = []
    for proc in psutil.process_iter(["cmdline"]):
        cmdline = proc.info.get("cmdline") or []
        if cmdline and Path(cmdline[0]).name == name and match(list(cmdline[1:])):
            pids.append(proc.pid)
    return pids
