from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from netrunner.config import AppConfig
from netrunner.errors import LauncherError
from netrunner.lifecycle.registry import LaunchRegistry
from netrunner.lifecycle.teardown import TeardownReport
from netrunner.logger import configure_logging
from netrunner.orchestrator import Orchestrator
from netrunner.runner.control import LaunchKind, LaunchOutcome, LaunchRequest, PortOverrides, Ready
from netrunner.runner.resolver import resolve_binary


app = typer.Typer(help="Launch and tear down local networks driven by the pop CLI")


def _orchestrator(config: Path | None, log_level: str) -> Orchestrator:
    configure_logging(log_level)
    cfg = AppConfig.from_yaml(config)
    return Orchestrator(cfg, LaunchRegistry(cfg.paths.state_file))


def _report_outcome(outcome: LaunchOutcome) -> None:
    if not isinstance(outcome, Ready):
        typer.echo(f"error: {outcome.error.message}", err=True)
        if outcome.raw_log:
            typer.echo(outcome.raw_log, err=True)
        raise typer.Exit(code=1)

    topology = outcome.topology
    if outcome.raw_log:
        typer.echo(outcome.raw_log)
        typer.echo("")
    typer.echo(f"launch_id: {outcome.launch_id}")
    if outcome.base_dir is not None:
        typer.echo(f"base_dir: {outcome.base_dir}")
        typer.echo(f"zombie_json: {outcome.descriptor_path}")
    typer.echo(f"relay_ws: {topology.relay.url}")
    for chain in topology.chains:
        typer.echo(f"chain_ws: {chain.url}")
    if topology.eth_rpc is not None:
        typer.echo(f"eth_rpc_ws: {topology.eth_rpc.url}")
    typer.echo(f"pids: {' '.join(map(str, outcome.process_ids))}")


def _report_teardown(report: TeardownReport) -> None:
    typer.echo(report.message)


@app.command()
def which(config: Path | None = None) -> None:
    """Print the binary that would be executed."""
    typer.echo(resolve_binary(AppConfig.from_yaml(config).binary))


@app.command()
def up_node(
    node_port: int | None = None,
    eth_rpc_port: int | None = None,
    verbose: bool = False,
    timeout: float | None = None,
    config: Path | None = None,
    log_level: str = "WARNING",
) -> None:
    """Start a single development node and print its endpoint."""
    orchestrator = _orchestrator(config, log_level)
    request = LaunchRequest(
        kind=LaunchKind.NODE,
        verbose=verbose,
        ports=PortOverrides(node_port=node_port, eth_rpc_port=eth_rpc_port),
        require_parachain=False,
        timeout_sec=timeout,
    )
    _report_outcome(asyncio.run(orchestrator.launch(request)))


@app.command()
def up_network(
    target: str,
    chain: bool = typer.Option(False, help="TARGET is a well-known chain name, not a file"),
    verbose: bool = False,
    require_parachain: bool = True,
    descriptor: Path | None = None,
    timeout: float | None = None,
    config: Path | None = None,
    log_level: str = "WARNING",
) -> None:
    """Start a relay chain + parachains topology and print its endpoints."""
    orchestrator = _orchestrator(config, log_level)
    request = LaunchRequest(
        kind=LaunchKind.CHAIN if chain else LaunchKind.NETWORK,
        target=target,
        verbose=verbose,
        require_parachain=require_parachain,
        descriptor_path=descriptor,
        timeout_sec=timeout,
    )
    _report_outcome(asyncio.run(orchestrator.launch(request)))


@app.command()
def down(
    launch_id: str | None = typer.Option(None, "--id", help="launch id printed by up-*"),
    pid: list[int] = typer.Option([], help="pid to kill, repeatable"),
    path: Path | None = typer.Option(None, help="network base dir or zombie.json"),
    all_networks: bool = typer.Option(False, "--all", help="every network pop knows about"),
    keep_state: bool = False,
    via_pop: bool = typer.Option(False, help="kill pids with `pop clean node --pid`"),
    wait_ports: bool = True,
    config: Path | None = None,
    log_level: str = "WARNING",
) -> None:
    """Tear down by launch id, pids, path or everything."""
    orchestrator = _orchestrator(config, log_level)
    coordinator = orchestrator.teardown_coordinator

    async def _run() -> TeardownReport:
        if launch_id is not None:
            return await coordinator.teardown(
                launch_id, ensure_ports_released=wait_ports, keep_state=keep_state
            )
        if pid:
            if via_pop:
                return await coordinator.clean_nodes(pid)
            return coordinator.stop_pids(pid)
        if all_networks:
            return await coordinator.clean_network(all_networks=True, keep_state=keep_state)
        if path is not None:
            return await coordinator.clean_network(path, keep_state=keep_state)
        raise typer.BadParameter("one of --id, --pid, --path or --all is required")

    try:
        report = asyncio.run(_run())
    except LauncherError as exc:
        typer.echo(f"error: {exc.message}", err=True)
        if exc.log:
            typer.echo(exc.log, err=True)
        raise typer.Exit(code=1) from exc
    _report_teardown(report)


@app.command("ls")
def list_launches(config: Path | None = None) -> None:
    """List launches recorded in the state file."""
    cfg = AppConfig.from_yaml(config)
    registry = LaunchRegistry(cfg.paths.state_file)
    for record in registry.records():
        pids = " ".join(map(str, record.pids))
        typer.echo(f"{record.launch_id}  {record.kind}  {' '.join(record.endpoints)}  pids: {pids}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
