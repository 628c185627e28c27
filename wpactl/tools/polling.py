"""Bounded poll loop shared by the state and lease waits."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


async def poll_until(
    probe: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    timeout: float,
    interval: float,
) -> tuple[bool, T]:
    """
    Call `probe` every `interval` seconds until `done` accepts its value.

    Returns (reached, last_value). The probe always runs at least once; no
    sleep is started that would end past the deadline, so a timeout shorter
    than the interval means exactly one probe.
    """
    if interval <= 0:
        raise ValueError("poll interval must be positive")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(timeout, 0.0)
    while True:
        value = await probe()
        if done(value):
            return True, value
        if deadline - loop.time() < interval:
            return False, value
        await asyncio.sleep(interval)
