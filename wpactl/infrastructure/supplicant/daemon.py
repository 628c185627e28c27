"""
Supplicant Session - owns the wpa_supplicant process for one interface.

Starts wpa_supplicant in the foreground with timestamped debug output going
to a per-interface log file, tracks the process handle, and offers filtered
views of that log for troubleshooting.

Usage:
    session = SupplicantSession("wlan0", Path("/etc/wpa_supplicant/wpa_supplicant.conf"))
    await session.start()
    session.mark_command_start()
    ...
    print(await session.filtered_logs(LogFilter.EAP))
    await session.stop()
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from enum import Enum
from pathlib import Path
from typing import IO

import psutil

from ...core.errors import StartupError
from ...tools.proc_utils import (
    CommandRunner,
    find_processes,
    process_pattern,
    run_best_effort,
    run_command,
    terminate_process,
)

logger = logging.getLogger(__name__)

TIMESTAMP_SLACK_SECS = 1.0

_TIMESTAMP_RE = re.compile(r"^(\d+\.\d+):")


class LogFilter(str, Enum):
    """Categories of supplicant debug output."""

    ALL = "all"
    EAP = "eap"
    STATE = "state"
    SCAN = "scan"
    ERROR = "error"


LOG_PATTERNS: dict[LogFilter, re.Pattern[str]] = {
    LogFilter.EAP: re.compile(r"EAPOL:|EAP:|RX EAPOL|TX EAPOL|CTRL-EVENT-EAP", re.IGNORECASE),
    LogFilter.STATE: re.compile(r"State: \w+\s*->\s*\w+|CTRL-EVENT-(CONNECTED|DISCONNECTED)", re.IGNORECASE),
    LogFilter.SCAN: re.compile(r"scan|SCAN_|BSS:|Received scan results", re.IGNORECASE),
    LogFilter.ERROR: re.compile(r"fail|error|TIMEOUT|reason=|TEMP-DISABLED", re.IGNORECASE),
}


def filter_lines(lines: list[str], log_filter: LogFilter | str) -> list[str]:
    log_filter = LogFilter(log_filter)
    if log_filter == LogFilter.ALL:
        return list(lines)
    pattern = LOG_PATTERNS[log_filter]
    return [line for line in lines if pattern.search(line)]


def lines_since(lines: list[str], since: float) -> list[str]:
    """Lines timestamped at or after `since` minus the slack.

    Untimestamped continuation lines are kept once collection has started.
    """
    threshold = since - TIMESTAMP_SLACK_SECS
    collected: list[str] = []
    for line in lines:
        match = _TIMESTAMP_RE.match(line)
        if match:
            if float(match.group(1)) >= threshold:
                collected.append(line)
        elif collected:
            collected.append(line)
    return collected


class SupplicantSession:
    """Lifecycle and debug log of one wpa_supplicant instance."""

    def __init__(
        self,
        interface: str,
        config_path: Path,
        runner: CommandRunner | None = None,
        binary: str = "wpa_supplicant",
        debug_level: int = 2,
        log_dir: Path = Path("/tmp"),
        settle_secs: float = 1.0,
        restart_delay_secs: float = 1.0,
        stop_grace_secs: float = 3.0,
        stop_system_service: bool = True,
        sudo: bool = False,
        command_timeout: float = 10.0,
    ):
        self.interface = interface
        self.config_path = Path(config_path)
        self._runner = runner or run_command
        self.binary = binary
        self.debug_level = debug_level
        self.log_dir = Path(log_dir)
        self.settle_secs = settle_secs
        self.restart_delay_secs = restart_delay_secs
        self.stop_grace_secs = stop_grace_secs
        self.stop_system_service = stop_system_service
        self.sudo = sudo
        self.command_timeout = command_timeout

        self._process: asyncio.subprocess.Process | None = None
        self._log_fp: IO[str] | None = None
        self._last_command_ts = 0.0

    @property
    def log_path(self) -> Path:
        return self.log_dir / f"wpa_supplicant_{self.interface}.log"

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def _process_pattern(self) -> str:
        return process_pattern(self.binary, "-i", self.interface)

    def _bound_to_interface(self, argv: list[str]) -> bool:
        for i, arg in enumerate(argv):
            if arg == f"-i{self.interface}":
                return True
            if arg == "-i" and argv[i + 1 : i + 2] == [self.interface]:
                return True
        return False

    async def _find_instances(self) -> list[int]:
        """PIDs of any wpa_supplicant bound to the interface, owned or not."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, find_processes, self.binary, self._bound_to_interface)
        except psutil.Error as e:
            logger.debug("Process scan for %s failed: %s", self.interface, e)
            return []

    def _build_command(self) -> list[str]:
        cmd = [
            self.binary,
            "-" + "d" * self.debug_level,
            "-t",
            "-i", self.interface,
            "-c", str(self.config_path),
        ]
        return ["sudo", *cmd] if self.sudo else cmd

    async def _best_effort(self, args: list[str]):
        return await run_best_effort(self._runner, args, timeout=self.command_timeout, sudo=self.sudo)

    def _close_log(self) -> None:
        if self._log_fp is not None:
            try:
                self._log_fp.close()
            except OSError as e:
                logger.debug("Closing %s failed: %s", self.log_path, e)
            self._log_fp = None

    def _owned_process_alive(self) -> bool:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return False
        return psutil.pid_exists(proc.pid)

    # ----------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Launch wpa_supplicant for the interface. Raises StartupError."""
        iface = self.interface
        logger.info("Starting wpa_supplicant on %s", iface)

        if self.stop_system_service:
            await self._best_effort(["systemctl", "stop", "wpa_supplicant.service"])
        stale = await self._find_instances()
        if stale:
            logger.info("Stopping previous wpa_supplicant on %s (pids %s)", iface, stale)
            await self._best_effort(["pkill", "-f", self._process_pattern])
            await asyncio.sleep(self.restart_delay_secs)

        up = await self._runner(["ip", "link", "set", iface, "up"], timeout=self.command_timeout, sudo=self.sudo)
        if not up.ok:
            raise StartupError(iface, f"cannot bring interface up: {up.output}")

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._log_fp = open(self.log_path, "w", encoding="utf-8")
        except OSError as e:
            raise StartupError(iface, f"cannot open log {self.log_path}: {e}") from e

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._build_command(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=self._log_fp,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            self._close_log()
            raise StartupError(iface, str(e)) from e

        await asyncio.sleep(self.settle_secs)

        if not self._owned_process_alive():
            tail = await self.recent_logs(20)
            code = self._process.returncode if self._process is not None else None
            self._process = None
            self._close_log()
            raise StartupError(iface, f"process exited during startup (code {code})", log_tail=tail)

        self.mark_command_start()
        logger.info("wpa_supplicant running on %s (pid %s), log %s", iface, self.pid, self.log_path)

    async def stop(self) -> None:
        """Stop the owned process and any other instance bound to the interface."""
        self._close_log()
        proc = self._process
        self._process = None
        if proc is not None:
            logger.info("Stopping wpa_supplicant on %s (pid %s)", self.interface, proc.pid)
            try:
                await terminate_process(proc, grace=self.stop_grace_secs)
            except Exception as e:
                logger.warning("Error stopping wpa_supplicant pid %s: %s", proc.pid, e)
        await self._best_effort(["pkill", "-f", self._process_pattern])

    async def restart(self) -> None:
        await self.stop()
        await asyncio.sleep(self.restart_delay_secs)
        await self.start()

    async def is_running(self) -> bool:
        if self._process is not None:
            return self._owned_process_alive()
        return bool(await self._find_instances())

    # ---------------------------------------------------------------- logs

    def mark_command_start(self) -> None:
        self._last_command_ts = time.time()

    def _read_log_lines(self) -> list[str]:
        try:
            text = self.log_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return []
        return [line for line in text.splitlines() if line.strip()]

    async def _log_lines(self) -> list[str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_log_lines)

    async def recent_logs(self, lines: int = 100) -> list[str]:
        all_lines = await self._log_lines()
        return all_lines[-lines:] if lines > 0 else []

    async def logs_since_last_command(self) -> list[str]:
        return lines_since(await self._log_lines(), self._last_command_ts)

    async def filtered_logs(
        self,
        log_filter: LogFilter | str = LogFilter.ALL,
        since_last_command: bool = True,
        lines: int = 100,
    ) -> list[str]:
        source = await self.logs_since_last_command() if since_last_command else await self._log_lines()
        matched = filter_lines(source, log_filter)
        return matched[-lines:] if lines > 0 else []


class MockSupplicantSession(SupplicantSession):
    """Supplicant session that never spawns a process."""

    def __init__(self, interface: str, config_path: Path, **kwargs):
        super().__init__(interface, config_path, **kwargs)
        self._running = False
        self.starts = 0
        self.stops = 0
        self.log_buffer: list[str] = []

    async def start(self) -> None:
        self._running = True
        self.starts += 1
        self.mark_command_start()
        self.log_buffer.append(f"{time.time():.6f}: Successfully initialized wpa_supplicant")

    async def stop(self) -> None:
        if self._running:
            self.stops += 1
        self._running = False

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def is_running(self) -> bool:
        return self._running

    async def _log_lines(self) -> list[str]:
        return list(self.log_buffer)
