from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable


async def is_port_open(host: str, port: int, *, timeout_sec: float = 0.2) -> bool:
    """True if something accepts TCP connections on host:port."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout_sec)
    except (OSError, asyncio.TimeoutError):  # noqa: UP041
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


async def wait_port_open(
    host: str, port: int, *, timeout_sec: float, poll_interval_sec: float = 0.2
) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_sec
    while True:
        if await is_port_open(host, port):
            return True
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(poll_interval_sec)


async def wait_ports_released(
    ports: Iterable[int],
    *,
    host: str = "127.0.0.1",
    timeout_sec: float,
    poll_interval_sec: float = 0.2,
    probe_timeout_sec: float = 0.2,
) -> list[int]:
    """Poll until nothing listens on `ports`; returns the ports still bound at the deadline."""
    pending = sorted(set(ports))
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_sec
    while pending:
        pending = [
            port
            for port in pending
            if await is_port_open(host, port, timeout_sec=probe_timeout_sec)
        ]
        if not pending or loop.time() >= deadline:
            break
        await asyncio.sleep(poll_interval_sec)
    return pending
