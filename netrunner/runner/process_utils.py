"""
Async utilities for process supervision.

- cancel_task(): safe cancellation of an asyncio.Task
- drain_process_stream(): reads stdout/stderr line-by-line into a shared queue
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

from structlog.typing import FilteringBoundLogger


@dataclass(slots=True, frozen=True)
class StreamLine:
    stream: str
    line: str


@dataclass(slots=True, frozen=True)
class StreamClosed:
    stream: str


StreamEvent = StreamLine | StreamClosed


async def cancel_task(task: asyncio.Task[None] | None) -> None:
    """Cancel a task and await its completion, suppressing any exceptions."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task


async def _read_line(reader: asyncio.StreamReader, max_bytes: int) -> bytes:
    """Next line including its newline, cut to `max_bytes`; b"" at EOF."""
    head = b""
    while True:
        try:
            chunk = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            # EOF: whatever is left, possibly without a trailing newline
            return (head + exc.partial)[:max_bytes]
        except asyncio.LimitOverrunError as exc:
            # longer than the reader's buffer limit: keep the start, skip the rest
            chunk = await reader.readexactly(exc.consumed)
            head = (head + chunk)[:max_bytes]
            continue
        return (head + chunk)[:max_bytes] if head else chunk


async def drain_process_stream(
    logger: FilteringBoundLogger,
    *,
    process_name: str,
    stream_name: str,
    reader: asyncio.StreamReader | None,
    sink: asyncio.Queue[StreamEvent],
    max_line_len: int = 4000,
) -> None:
    """Drain an async stream, log each line and forward it; always ends with StreamClosed."""
    if reader is None:
        await sink.put(StreamClosed(stream_name))
        return

    prefix = f"{process_name}.{stream_name}"
    try:
        while True:
            # utf-8 is at most 4 bytes per character
            raw = await _read_line(reader, max_line_len * 4 + 1)
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")

            if len(line) > max_line_len:
                line = line[:max_line_len] + "…"

            logger.debug("proc.out", process=process_name, stream=prefix, line=line)
            await sink.put(StreamLine(stream_name, line))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("proc.out_error", process=process_name, stream=prefix, error=repr(exc))
    await sink.put(StreamClosed(stream_name))
