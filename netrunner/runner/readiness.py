"""
Readiness detection for an uncooperative child process.

Both detectors end in exactly one of Ready / Failed / TimedOut and kill the
child on Failed and TimedOut before returning.

- StreamReadiness: markers in piped stdout/stderr (single nodes)
- DescriptorReadiness: polls for a parseable descriptor file (networks)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from structlog.typing import FilteringBoundLogger

from netrunner.config import ReadinessSettings, TeardownSettings
from netrunner.errors import (
    FatalOutputError,
    LauncherError,
    ParseError,
    ReadinessTimeoutError,
)
from netrunner.runner.control import Failed, LaunchOutcome, Ready, TimedOut
from netrunner.runner.process import ProcessHandle, kill
from netrunner.runner.process_utils import StreamClosed, StreamEvent
from netrunner.topology.extract import (
    EndpointScanner,
    parse_pids,
    read_descriptor,
    topology_from_urls,
)


def find_marker(text: str, markers: Sequence[str]) -> str | None:
    lowered = text.lower()
    for marker in markers:
        if marker.lower() in lowered:
            return marker
    return None


class _Detector:
    def __init__(
        self,
        log_event: FilteringBoundLogger,
        readiness: ReadinessSettings,
        teardown: TeardownSettings,
    ) -> None:
        self.log_event = log_event
        self.readiness = readiness
        self.teardown = teardown

    async def _fail(self, handle: ProcessHandle, error: LauncherError, raw_log: str) -> Failed:
        await kill(handle, self.log_event, reason="launch_failed", timeout_sec=self.teardown.kill_timeout_sec)
        self.log_event.warning("launch.failed", pid=handle.pid, error=error.message)
        error.log = raw_log
        return Failed(error=error, raw_log=raw_log)

    async def _time_out(
        self, handle: ProcessHandle, timeout_sec: float, raw_log: str, last_error: str | None
    ) -> TimedOut:
        await kill(handle, self.log_event, reason="timeout", timeout_sec=self.teardown.kill_timeout_sec)
        message = f"no readiness signal within {timeout_sec:g}s"
        if last_error:
            message += f" (last error: {last_error})"
        self.log_event.warning("launch.timeout", pid=handle.pid, timeout_s=timeout_sec)
        error = ReadinessTimeoutError(message, log=raw_log, last_error=last_error)
        return TimedOut(error=error, raw_log=raw_log)


class StreamReadiness(_Detector):
    """Consumes the single ordered channel fed by the stdout and stderr drainers."""

    async def watch(
        self,
        handle: ProcessHandle,
        *,
        timeout_sec: float,
        relay_port: int | None = None,
        aux_ports: Iterable[int] = (),
    ) -> LaunchOutcome:
        if handle.events is None:
            raise ValueError("stream readiness needs a piped process handle")
        events = handle.events
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_sec

        lines: list[str] = []
        scanner = EndpointScanner()
        ready_marker: str | None = None
        closed: set[str] = set()

        while len(closed) < 2:
            if ready_marker is not None and scanner.urls:
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                return await self._time_out(handle, timeout_sec, "\n".join(lines), None)
            try:
                event = await asyncio.wait_for(events.get(), timeout=remaining)
            except asyncio.TimeoutError:  # noqa: UP041
                return await self._time_out(handle, timeout_sec, "\n".join(lines), None)

            if isinstance(event, StreamClosed):
                closed.add(event.stream)
                continue

            lines.append(event.line)
            fatal = find_marker(event.line, self.readiness.fatal_markers)
            if fatal is not None:
                error = FatalOutputError(f"fatal output: {event.line.strip()}")
                return await self._fail(handle, error, "\n".join(lines))
            scanner.feed(event.line)
            if ready_marker is None:
                ready_marker = find_marker(event.line, self.readiness.ready_markers)

        returncode: int | None = None
        if len(closed) < 2:
            # ready: keep the trailing summary lines (pids) for a short while
            await self._settle(events, lines, scanner, closed, deadline)
            returncode = handle.returncode
        else:
            remaining = max(deadline - loop.time(), 0.0)
            try:
                returncode = await handle.wait(remaining or 0.01)
            except asyncio.TimeoutError:  # noqa: UP041
                return await self._time_out(handle, timeout_sec, "\n".join(lines), None)

        raw_log = "\n".join(lines)
        urls = scanner.urls
        became_ready = ready_marker is not None or returncode == 0
        if not urls or not became_ready:
            if urls:
                message = f"process exited with status {returncode} before becoming ready"
            else:
                message = f"process exited with status {returncode} without reporting an endpoint"
            error = FatalOutputError(message, returncode=returncode)
            return await self._fail(handle, error, raw_log)

        try:
            topology = topology_from_urls(urls, relay_port=relay_port, aux_ports=aux_ports)
        except ParseError as error:
            return await self._fail(handle, error, raw_log)

        pids = parse_pids(raw_log)
        if handle.is_alive and handle.pid not in pids:
            pids.append(handle.pid)
        self.log_event.info(
            "launch.ready", pid=handle.pid, relay=topology.relay.url, node_pids=pids
        )
        return Ready(topology=topology, process_ids=tuple(pids), raw_log=raw_log)

    async def _settle(
        self,
        events: asyncio.Queue[StreamEvent],
        lines: list[str],
        scanner: EndpointScanner,
        closed: set[str],
        deadline: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        settle_until = min(loop.time() + self.readiness.settle_sec, deadline)
        while len(closed) < 2:
            remaining = settle_until - loop.time()
            if remaining <= 0:
                return
            try:
                event = await asyncio.wait_for(events.get(), timeout=remaining)
            except asyncio.TimeoutError:  # noqa: UP041
                return
            if isinstance(event, StreamClosed):
                closed.add(event.stream)
                continue
            lines.append(event.line)
            scanner.feed(event.line)


class DescriptorReadiness(_Detector):
    """Sleep-and-recheck loop over the launch log and the descriptor file."""

    async def watch(
        self,
        handle: ProcessHandle,
        *,
        timeout_sec: float,
        locate: Callable[[], Path | None],
        require_parachain: bool = True,
    ) -> LaunchOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_sec
        last_error: str | None = None

        while True:
            raw_log = handle.read_log()
            fatal = find_marker(raw_log, self.readiness.fatal_markers)
            if fatal is not None:
                error = FatalOutputError(f"fatal output: {fatal!r} reported by the external program")
                return await self._fail(handle, error, raw_log)

            path = locate()
            if path is not None:
                try:
                    topology = read_descriptor(path, require_parachain=require_parachain)
                except ParseError as exc:
                    # half-written descriptor: try again next tick
                    if exc.message != last_error:
                        self.log_event.debug("descriptor.not_ready", path=str(path), error=exc.message)
                    last_error = exc.message
                else:
                    pids = [pid for pid in parse_pids(raw_log) if pid != handle.pid]
                    if handle.is_alive:
                        pids.insert(0, handle.pid)
                    self.log_event.info(
                        "launch.ready",
                        pid=handle.pid,
                        descriptor=str(path),
                        relay=topology.relay.url,
                        chains=[c.url for c in topology.chains],
                    )
                    return Ready(
                        topology=topology,
                        process_ids=tuple(pids),
                        raw_log=raw_log,
                        descriptor_path=path,
                    )

            if not handle.is_alive:
                raw_log = handle.read_log()
                message = f"process exited with status {handle.returncode} before the network was ready"
                if last_error:
                    message += f" (last error: {last_error})"
                error = FatalOutputError(message, returncode=handle.returncode)
                return await self._fail(handle, error, raw_log)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return await self._time_out(handle, timeout_sec, handle.read_log(), last_error)
            await asyncio.sleep(min(self.readiness.poll_interval_sec, remaining))
