from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from netrunner.config import AppConfig, get_settings
from netrunner.errors import TeardownError
from netrunner.lifecycle.ports import wait_ports_released
from netrunner.lifecycle.registry import LaunchRecord, LaunchRegistry
from netrunner.logger import get_logger
from netrunner.runner.resolver import resolve_binary


@dataclass(slots=True)
class TeardownReport:
    signalled: list[int] = field(default_factory=list)
    already_gone: list[int] = field(default_factory=list)
    output: str = ""

    @property
    def message(self) -> str:
        parts = []
        if self.signalled:
            parts.append(f"killed: {' '.join(map(str, self.signalled))}")
        if self.already_gone:
            parts.append(f"already gone: {' '.join(map(str, self.already_gone))}")
        if self.output:
            parts.append(self.output)
        return "\n".join(parts) or "nothing to tear down"


class TeardownCoordinator:
    """Stops what was launched: by pid, by descriptor/base dir, or everything."""

    def __init__(
        self,
        config: AppConfig | None = None,
        registry: LaunchRegistry | None = None,
        binary: str | None = None,
    ) -> None:
        self._config = config or get_settings()
        self._registry = registry or LaunchRegistry()
        self._binary = binary
        self.log_event = get_logger("teardown")

    @property
    def binary(self) -> str:
        if self._binary is None:
            self._binary = resolve_binary(self._config.binary)
        return self._binary

    # ---------- by pid ----------
    def stop_pids(self, pids: Iterable[int]) -> TeardownReport:
        """SIGKILL each pid; a pid that no longer exists counts as torn down."""
        report = TeardownReport()
        for pid in pids:
            if pid <= 0:
                raise TeardownError(f"refusing to signal pid {pid}")
            if self._registry.is_dead(pid):
                report.already_gone.append(pid)
                continue
            try:
                os.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                report.already_gone.append(pid)
            except PermissionError as exc:
                raise TeardownError(f"cannot signal pid {pid}: {exc}") from exc
            else:
                report.signalled.append(pid)
            self._registry.mark_dead(pid)
        self.log_event.info(
            "teardown.pids", signalled=report.signalled, already_gone=report.already_gone
        )
        return report

    # ---------- delegated to the external program ----------
    async def _run_clean(self, args: list[str]) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TeardownError(f"failed to execute {self.binary}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._config.teardown.clean_timeout_sec
            )
        except asyncio.TimeoutError as exc:  # noqa: UP041
            process.kill()
            await process.wait()
            raise TeardownError(f"`{' '.join(args)}` did not finish in time") from exc

        output = "\n\n".join(
            part.decode(errors="replace").strip() for part in (stderr, stdout) if part.strip()
        )
        self.log_event.info("teardown.clean", args=args, returncode=process.returncode)
        if process.returncode != 0:
            raise TeardownError(
                f"`{' '.join(args)}` exited with status {process.returncode}", log=output
            )
        return output

    async def clean_nodes(self, pids: Iterable[int]) -> TeardownReport:
        pid_list = [int(pid) for pid in pids]
        if not pid_list:
            return TeardownReport()
        output = await self._run_clean(["clean", "node", "--pid", *map(str, pid_list)])
        for pid in pid_list:
            self._registry.mark_dead(pid)
        return TeardownReport(signalled=pid_list, output=output)

    async def clean_network(
        self, path: Path | None = None, *, all_networks: bool = False, keep_state: bool = False
    ) -> TeardownReport:
        if all_networks:
            args = ["clean", "network", "--all"]
        elif path is not None:
            if not path.exists():
                self.log_event.info("teardown.already_clean", path=str(path))
                return TeardownReport(output=f"already torn down: {path}")
            args = ["clean", "network", str(path)]
        else:
            raise ValueError("either a path or all_networks is required")
        if keep_state:
            args.append("--keep-state")

        output = await self._run_clean(args)

        if all_networks:
            forgotten = [r for r in self._registry.records() if r.base_dir is not None]
        else:
            forgotten = self._registry.find_by_path(path)  # type: ignore[arg-type]
        for record in forgotten:
            self._registry.forget(record.launch_id)
        return TeardownReport(output=output)

    # ---------- full teardown of a recorded launch ----------
    async def teardown(
        self,
        record: LaunchRecord | str,
        *,
        ensure_ports_released: bool = True,
        keep_state: bool = False,
    ) -> TeardownReport:
        if isinstance(record, str):
            found = self._registry.get(record)
            if found is None:
                self.log_event.info("teardown.unknown_launch", launch_id=record)
                return TeardownReport(output=f"no running launch {record}")
            record = found

        report = TeardownReport()
        clean_error: TeardownError | None = None
        if record.base_dir is not None:
            try:
                cleaned = await self.clean_network(record.base_dir, keep_state=keep_state)
                report.output = cleaned.output
            except TeardownError as exc:
                clean_error = exc

        # recorded pids are killed whether or not the clean subcommand succeeded
        stopped = self.stop_pids(record.pids)
        report.signalled = stopped.signalled
        report.already_gone = stopped.already_gone

        if clean_error is not None:
            # record kept so a later teardown can retry the clean
            self.log_event.warning(
                "teardown.clean_failed",
                launch_id=record.launch_id,
                signalled=report.signalled,
                error=clean_error.message,
            )
            raise clean_error

        if ensure_ports_released and record.ports:
            await self.ensure_ports_released(record.ports)

        self._registry.forget(record.launch_id)
        return report

    async def ensure_ports_released(self, ports: Iterable[int]) -> None:
        settings = self._config.teardown
        still_bound = await wait_ports_released(
            ports,
            timeout_sec=settings.port_release_timeout_sec,
            poll_interval_sec=settings.port_poll_interval_sec,
            probe_timeout_sec=settings.probe_timeout_sec,
        )
        if still_bound:
            raise TeardownError(
                f"ports still in use after {settings.port_release_timeout_sec:g}s: "
                f"{' '.join(map(str, still_bound))}"
            )
        self.log_event.info("teardown.ports_released", ports=sorted(set(ports)))
