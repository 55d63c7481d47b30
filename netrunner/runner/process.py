from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import subprocess
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypedDict

from structlog.typing import FilteringBoundLogger

from netrunner.errors import LaunchError, ResolutionError
from netrunner.runner.process_utils import StreamEvent, cancel_task, drain_process_stream


# per-line buffer limit of the piped streams; longer lines are cut by the drainers
STREAM_LIMIT = 1024 * 1024


@dataclass(slots=True, frozen=True)
class ProcessCommand:
    """External process start specification."""

    exe: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None

    @property
    def argv(self) -> list[str]:
        return [self.exe, *self.args]


@dataclass(slots=True)
class ProcessHandle:
    """
    Sole owner of one spawned OS process until teardown claims it.

    Stream mode wraps an asyncio process whose pipes feed `events`; log-file
    mode wraps a plain Popen so the child outlives the event loop that
    started it.
    """

    command: ProcessCommand
    process: asyncio.subprocess.Process | subprocess.Popen[bytes]
    started_monotonic: float
    started_wall: float
    # log-file mode: stdout+stderr appended here
    log_path: Path | None = None
    # stream mode: both drainers feed this queue
    events: asyncio.Queue[StreamEvent] | None = None
    stdout_task: asyncio.Task[None] | None = None
    stderr_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        if isinstance(self.process, subprocess.Popen):
            return self.process.poll()
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return self.returncode is None

    @property
    def uptime_seconds(self) -> float:
        return max(0.0, time.monotonic() - self.started_monotonic)

    async def wait(self, timeout_sec: float, poll_interval_sec: float = 0.05) -> int:
        """Wait for exit; raises asyncio.TimeoutError when the child is still running."""
        if not isinstance(self.process, subprocess.Popen):
            return await asyncio.wait_for(self.process.wait(), timeout=timeout_sec)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_sec
        while (code := self.process.poll()) is None:
            if loop.time() >= deadline:
                raise asyncio.TimeoutError(f"pid {self.pid} still running")  # noqa: UP041
            await asyncio.sleep(poll_interval_sec)
        return code

    def read_log(self) -> str:
        if self.log_path is None:
            return ""
        try:
            return self.log_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""


class PopenKwargs(TypedDict, total=False):
    stdin: int | None
    stdout: int | None
    stderr: int | None
    cwd: str | Path | None
    env: Mapping[str, str] | None
    start_new_session: bool


async def spawn(
    command: ProcessCommand,
    log_out: FilteringBoundLogger,
    *,
    log_path: Path | None = None,
    process_name: str = "pop",
    max_line_len: int = 4000,
) -> ProcessHandle:
    """
    Spawn the process in its own session and return at once.

    With `log_path` both streams are appended to that file; otherwise they are
    piped and drained into `handle.events`.
    """
    env = os.environ.copy()
    if command.env:
        env.update(command.env)

    popen_kwargs: PopenKwargs = {
        "cwd": command.cwd,
        "env": env,
        "stdin": subprocess.DEVNULL,
        "start_new_session": True,
    }

    process: asyncio.subprocess.Process | subprocess.Popen[bytes]
    try:
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "ab") as log_file:
                process = subprocess.Popen(
                    command.argv, stdout=log_file, stderr=subprocess.STDOUT, **popen_kwargs
                )
        else:
            process = await asyncio.create_subprocess_exec(
                command.exe,
                *command.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                **popen_kwargs,
            )
    except FileNotFoundError as exc:
        log_out.error("proc.start_error", error="FileNotFoundError", exe=command.exe)
        if os.sep not in command.exe:
            raise ResolutionError(f"binary not found: {command.exe!r} is not on PATH") from exc
        raise LaunchError(f"binary not found: {command.exe}") from exc
    except OSError as exc:
        log_out.error("proc.start_error", error=repr(exc), exe=command.exe)
        raise LaunchError(f"failed to execute {command.exe}: {exc}") from exc

    handle = ProcessHandle(
        command=command,
        process=process,
        started_monotonic=time.monotonic(),
        started_wall=time.time(),
        log_path=log_path,
    )

    if isinstance(process, asyncio.subprocess.Process):
        events: asyncio.Queue[StreamEvent] = asyncio.Queue()
        handle.events = events
        handle.stdout_task = asyncio.create_task(
            drain_process_stream(
                log_out,
                process_name=process_name,
                stream_name="stdout",
                reader=process.stdout,
                sink=events,
                max_line_len=max_line_len,
            ),
            name=f"drain:{process.pid}:stdout",
        )
        handle.stderr_task = asyncio.create_task(
            drain_process_stream(
                log_out,
                process_name=process_name,
                stream_name="stderr",
                reader=process.stderr,
                sink=events,
                max_line_len=max_line_len,
            ),
            name=f"drain:{process.pid}:stderr",
        )

    log_out.info(
        "proc.started",
        pid=process.pid,
        exe=command.exe,
        args=command.args,
        log=str(log_path) if log_path else None,
    )
    return handle


def _signal_group(pid: int, sig: signal.Signals) -> None:
    try:
        pgid = os.getpgid(pid)
    except ProcessLookupError:
        return
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return
    except PermissionError:
        os.kill(pid, sig)


async def kill(
    handle: ProcessHandle,
    log_event: FilteringBoundLogger,
    *,
    reason: str,
    timeout_sec: float = 2.0,
) -> int | None:
    """SIGKILL the whole process group, reap the child, stop drainers. Idempotent."""
    if handle.is_alive:
        with contextlib.suppress(ProcessLookupError):
            _signal_group(handle.pid, signal.SIGKILL)
        log_event.info("proc.kill_sent", pid=handle.pid, reason=reason)
        try:
            await handle.wait(timeout_sec)
            log_event.info("proc.killed", pid=handle.pid, returncode=handle.returncode)
        except asyncio.TimeoutError:  # noqa: UP041
            log_event.error("proc.kill_timeout", pid=handle.pid)

    for task in (handle.stdout_task, handle.stderr_task):
        await cancel_task(task)
    return handle.returncode
