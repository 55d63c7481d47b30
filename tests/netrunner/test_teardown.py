from __future__ import annotations

import asyncio
import socket
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from netrunner.config import AppConfig
from netrunner.errors import TeardownError
from netrunner.lifecycle.ports import is_port_open, wait_port_open, wait_ports_released
from netrunner.lifecycle.registry import LaunchRegistry
from netrunner.lifecycle.teardown import TeardownCoordinator
from netrunner.runner.control import LaunchRequest, Ready
from netrunner.topology import EndpointRole, NetworkEndpoint, Topology


WriteScript = Callable[[str, str], Path]


def _exited_pid() -> int:
    proc = subprocess.Popen(["true"])
    proc.wait()
    return proc.pid


def _listener() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    return sock


# ---- 1) Exited pid → success, twice ----
def test_stop_exited_pid_is_idempotent(config: AppConfig) -> None:
    coordinator = TeardownCoordinator(config, LaunchRegistry(), binary="pop")
    pid = _exited_pid()

    first = coordinator.stop_pids([pid])
    assert first.signalled == []
    assert first.already_gone == [pid]

    second = coordinator.stop_pids([pid])
    assert second.already_gone == [pid]
    assert second.signalled == []


# ---- 2) Live process is killed ----
def test_stop_live_pid(config: AppConfig) -> None:
    registry = LaunchRegistry()
    coordinator = TeardownCoordinator(config, registry, binary="pop")
    proc = subprocess.Popen(["sleep", "30"])
    try:
        report = coordinator.stop_pids([proc.pid])
        assert report.signalled == [proc.pid]
        assert proc.wait(timeout=5) != 0
        assert registry.is_dead(proc.pid)
        # observed dead: not signalled again
        assert coordinator.stop_pids([proc.pid]).already_gone == [proc.pid]
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


# ---- 3) Non-positive pids are refused ----
@pytest.mark.parametrize("pid", [0, -1])
def test_refuse_non_positive_pid(config: AppConfig, pid: int) -> None:
    coordinator = TeardownCoordinator(config, LaunchRegistry(), binary="pop")
    with pytest.raises(TeardownError):
        coordinator.stop_pids([pid])


# ---- 4) clean subcommand: exit status is authoritative ----
def test_clean_network_exit_status(
    config: AppConfig, write_script: WriteScript, tmp_path: Path
) -> None:
    args_file = tmp_path / "args"
    ok = write_script("pop", f'echo "$@" > {args_file}\necho "network cleaned"\nexit 0\n')
    base = tmp_path / "zombie-1"
    base.mkdir()

    coordinator = TeardownCoordinator(config, LaunchRegistry(), binary=str(ok))
    report = asyncio.run(coordinator.clean_network(base, keep_state=True))
    assert "network cleaned" in report.output
    assert args_file.read_text().split() == ["clean", "network", str(base), "--keep-state"]

    bad = write_script("pop-bad", 'echo "cannot stop network" >&2\nexit 1\n')
    coordinator = TeardownCoordinator(config, LaunchRegistry(), binary=str(bad))
    with pytest.raises(TeardownError) as ei:
        asyncio.run(coordinator.clean_network(base))
    assert "cannot stop network" in ei.value.log


# ---- 5) Path already gone → success, twice, without calling the binary ----
def test_clean_missing_path_is_idempotent(config: AppConfig, tmp_path: Path) -> None:
    coordinator = TeardownCoordinator(config, LaunchRegistry(), binary=str(tmp_path / "absent"))
    missing = tmp_path / "zombie-gone"
    for _ in range(2):
        report = asyncio.run(coordinator.clean_network(missing))
        assert "already torn down" in report.output


# ---- 6) clean node / clean network --all argument vectors ----
def test_clean_nodes_and_all(config: AppConfig, write_script: WriteScript, tmp_path: Path) -> None:
    args_file = tmp_path / "args"
    script = write_script("pop", f'echo "$@" >> {args_file}\nexit 0\n')
    registry = LaunchRegistry()
    coordinator = TeardownCoordinator(config, registry, binary=str(script))

    report = asyncio.run(coordinator.clean_nodes([101, 202]))
    assert report.signalled == [101, 202]
    assert registry.is_dead(101)
    asyncio.run(coordinator.clean_network(all_networks=True))

    assert args_file.read_text().splitlines() == [
        "clean node --pid 101 202",
        "clean network --all",
    ]
    with pytest.raises(ValueError):
        asyncio.run(coordinator.clean_network())


# ---- 7) Ports: open while listening, released after close ----
def test_ports_released_after_close() -> None:
    sock = _listener()
    port = sock.getsockname()[1]

    async def _run() -> list[int]:
        assert await is_port_open("127.0.0.1", port)
        assert await wait_port_open("127.0.0.1", port, timeout_sec=1)
        asyncio.get_running_loop().call_later(0.2, sock.close)
        return await wait_ports_released([port], timeout_sec=3, poll_interval_sec=0.05)

    started = time.monotonic()
    assert asyncio.run(_run()) == []
    assert time.monotonic() - started < 3


# ---- 8) Ports still bound → reported, and teardown raises ----
def test_ports_still_bound(config: AppConfig) -> None:
    sock = _listener()
    port = sock.getsockname()[1]
    try:
        still = asyncio.run(wait_ports_released([port], timeout_sec=0.3, poll_interval_sec=0.05))
        assert still == [port]

        coordinator = TeardownCoordinator(config, LaunchRegistry(), binary="pop")
        with pytest.raises(TeardownError) as ei:
            asyncio.run(coordinator.ensure_ports_released([port]))
        assert str(port) in ei.value.message
    finally:
        sock.close()


# ---- 9) Full teardown of a recorded launch ----
def test_teardown_recorded_launch(config: AppConfig) -> None:
    registry = LaunchRegistry()
    coordinator = TeardownCoordinator(config, registry, binary="pop")
    sock = _listener()
    port = sock.getsockname()[1]
    sock.close()
    proc = subprocess.Popen(["sleep", "30"])
    ready = Ready(
        topology=Topology(relay=NetworkEndpoint(EndpointRole.RELAY, "127.0.0.1", port)),
        process_ids=(proc.pid,),
        raw_log="",
    )
    launch_id = registry.record(ready, LaunchRequest.node()).launch_id
    try:
        report = asyncio.run(coordinator.teardown(launch_id))
        assert report.signalled == [proc.pid]
        assert registry.get(launch_id) is None
        proc.wait(timeout=5)

        # unknown launch id: nothing to do
        again = asyncio.run(coordinator.teardown(launch_id))
        assert again.signalled == []
        assert "no running launch" in again.message
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


# ---- 10) Pid number seen dead earlier, recorded again → still signalled ----
def test_teardown_reused_pid(config: AppConfig) -> None:
    registry = LaunchRegistry()
    coordinator = TeardownCoordinator(config, registry, binary="pop")
    proc = subprocess.Popen(["sleep", "30"])
    # an earlier launch held the same pid number and was torn down
    registry.mark_dead(proc.pid)
    ready = Ready(
        topology=Topology(relay=NetworkEndpoint(EndpointRole.RELAY, "127.0.0.1", 1)),
        process_ids=(proc.pid,),
        raw_log="",
    )
    launch_id = registry.record(ready, LaunchRequest.node()).launch_id
    try:
        report = asyncio.run(coordinator.teardown(launch_id, ensure_ports_released=False))
        assert report.signalled == [proc.pid]
        assert proc.wait(timeout=5) != 0
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


# ---- 11) clean subcommand fails → pids still killed, record kept ----
def test_teardown_clean_failure_still_kills(
    config: AppConfig, write_script: WriteScript, tmp_path: Path
) -> None:
    script = write_script("pop", 'echo "cannot stop network" >&2\nexit 1\n')
    registry = LaunchRegistry()
    coordinator = TeardownCoordinator(config, registry, binary=str(script))
    base = tmp_path / "zombie-x"
    base.mkdir()
    proc = subprocess.Popen(["sleep", "30"])
    ready = Ready(
        topology=Topology(relay=NetworkEndpoint(EndpointRole.RELAY, "127.0.0.1", 1)),
        process_ids=(proc.pid,),
        raw_log="",
        descriptor_path=base / "zombie.json",
    )
    launch_id = registry.record(ready, LaunchRequest.network("./net.toml")).launch_id
    try:
        with pytest.raises(TeardownError) as ei:
            asyncio.run(coordinator.teardown(launch_id))
        assert "cannot stop network" in ei.value.log
        assert proc.wait(timeout=5) != 0
        assert registry.get(launch_id) is not None
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
