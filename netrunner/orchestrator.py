from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from pathlib import Path
from uuid import uuid4

from structlog.contextvars import bound_contextvars

from netrunner.config import AppConfig, get_settings
from netrunner.errors import LaunchError
from netrunner.lifecycle.registry import LaunchRegistry
from netrunner.lifecycle.teardown import TeardownCoordinator, TeardownReport
from netrunner.logger import get_logger
from netrunner.runner.control import (
    Failed,
    LaunchKind,
    LaunchOutcome,
    LaunchRequest,
    Ready,
)
from netrunner.runner.process import ProcessCommand, ProcessHandle, spawn
from netrunner.runner.readiness import DescriptorReadiness, StreamReadiness
from netrunner.runner.resolver import resolve_binary
from netrunner.topology.discovery import find_latest_descriptor


# ink-node defaults when no override is given
DEFAULT_NODE_PORT = 9944
DEFAULT_ETH_RPC_PORT = 8545

# filesystem mtime granularity
_MTIME_SLACK_SEC = 1.0


class Orchestrator:
    """launch → observe → extract → register; teardown by launch id, pid or path."""

    def __init__(
        self,
        config: AppConfig | None = None,
        registry: LaunchRegistry | None = None,
        *,
        binary: str | None = None,
    ) -> None:
        self._config = config or get_settings()
        self.registry = registry if registry is not None else LaunchRegistry()
        self._binary = binary
        self.log_event = get_logger("launch.event")
        self.log_out = get_logger("proc.out")
        self.teardown_coordinator = TeardownCoordinator(self._config, self.registry, binary)

    @property
    def binary(self) -> str:
        if self._binary is None:
            self._binary = resolve_binary(self._config.binary)
        return self._binary

    # ---------- launch ----------
    async def launch(self, request: LaunchRequest) -> LaunchOutcome:
        """Run one launch to a terminal outcome; never raises for launch failures."""
        with bound_contextvars(launch=uuid4().hex[:8], kind=str(request.kind)):
            command = ProcessCommand(exe=self.binary, args=request.command_args())
            self.log_event.info("launch.requested", target=request.target, argv=command.argv)
            if request.kind is LaunchKind.NODE:
                outcome = await self._launch_node(request, command)
            else:
                outcome = await self._launch_network(request, command)

            if isinstance(outcome, Ready):
                record = self.registry.record(outcome, request)
                outcome = dataclasses.replace(outcome, launch_id=record.launch_id)
            return outcome

    async def launch_node(
        self,
        *,
        node_port: int | None = None,
        eth_rpc_port: int | None = None,
        verbose: bool = False,
    ) -> LaunchOutcome:
        request = LaunchRequest.node(node_port=node_port, eth_rpc_port=eth_rpc_port, verbose=verbose)
        return await self.launch(request)

    async def launch_network(self, path: str | Path, *, verbose: bool = False) -> LaunchOutcome:
        return await self.launch(LaunchRequest.network(path, verbose=verbose))

    async def launch_chain(self, name: str, *, verbose: bool = False) -> LaunchOutcome:
        return await self.launch(LaunchRequest.chain(name, verbose=verbose))

    async def _launch_node(self, request: LaunchRequest, command: ProcessCommand) -> LaunchOutcome:
        readiness = self._config.readiness
        try:
            handle = await spawn(command, self.log_out, max_line_len=readiness.max_line_len)
        except LaunchError as exc:
            return Failed(error=exc, raw_log="")

        detector = StreamReadiness(self.log_event, readiness, self._config.teardown)
        return await detector.watch(
            handle,
            timeout_sec=request.timeout_sec or readiness.node_timeout_sec,
            relay_port=request.ports.node_port or DEFAULT_NODE_PORT,
            aux_ports=[request.ports.eth_rpc_port or DEFAULT_ETH_RPC_PORT],
        )

    async def _launch_network(
        self, request: LaunchRequest, command: ProcessCommand
    ) -> LaunchOutcome:
        readiness = self._config.readiness
        paths = self._config.paths
        # unique per launch so concurrent launches never read each other's output
        log_path = paths.scratch_dir / f"pop-netrunner-{request.kind}-{uuid4().hex}.log"
        try:
            handle = await spawn(command, self.log_out, log_path=log_path)
        except LaunchError as exc:
            return Failed(error=exc, raw_log="")

        detector = DescriptorReadiness(self.log_event, readiness, self._config.teardown)
        return await detector.watch(
            handle,
            timeout_sec=request.timeout_sec or readiness.network_timeout_sec,
            locate=lambda: self._locate_descriptor(request, handle),
            require_parachain=request.require_parachain,
        )

    def _locate_descriptor(self, request: LaunchRequest, handle: ProcessHandle) -> Path | None:
        if request.descriptor_path is not None:
            return request.descriptor_path if request.descriptor_path.is_file() else None
        paths = self._config.paths
        return find_latest_descriptor(
            paths.descriptor_dir,
            prefix=paths.descriptor_prefix,
            name=paths.descriptor_name,
            newer_than=handle.started_wall - _MTIME_SLACK_SEC,
        )

    # ---------- teardown ----------
    async def teardown(
        self, launch_id: str, *, ensure_ports_released: bool = True, keep_state: bool = False
    ) -> TeardownReport:
        return await self.teardown_coordinator.teardown(
            launch_id, ensure_ports_released=ensure_ports_released, keep_state=keep_state
        )

    def teardown_pids(self, pids: Iterable[int]) -> TeardownReport:
        return self.teardown_coordinator.stop_pids(pids)

    async def teardown_path(self, path: Path, *, keep_state: bool = False) -> TeardownReport:
        return await self.teardown_coordinator.clean_network(path, keep_state=keep_state)

    async def clean_all(self, *, keep_state: bool = False) -> TeardownReport:
        return await self.teardown_coordinator.clean_network(all_networks=True, keep_state=keep_state)
