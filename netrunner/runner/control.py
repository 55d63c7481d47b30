from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Literal, TypeAlias

from netrunner.errors import LauncherError
from netrunner.topology.models import Topology


class LaunchKind(StrEnum):
    """What the external program is asked to bring up"""

    # single development node (`pop up ink-node`)
    NODE = "node"
    # relay + parachains from a network file (`pop up network <path>`)
    NETWORK = "network"
    # well-known chain by name (`pop up <chain>`)
    CHAIN = "chain"


@dataclass(slots=True, frozen=True)
class PortOverrides:
    node_port: int | None = None
    eth_rpc_port: int | None = None


@dataclass(slots=True, frozen=True)
class LaunchRequest:
    """Launch specification, immutable once issued"""

    kind: LaunchKind
    # network file path or chain name; unused for NODE
    target: str | None = None
    verbose: bool = False
    ports: PortOverrides = field(default_factory=PortOverrides)
    # a chain-less relay is acceptable when False
    require_parachain: bool = True
    # descriptor location when known in advance, otherwise discovered
    descriptor_path: Path | None = None
    # overrides the configured budget for this launch
    timeout_sec: float | None = None

    def __post_init__(self) -> None:
        if self.kind is not LaunchKind.NODE and not (self.target and self.target.strip()):
            raise ValueError(f"{self.kind} launch needs a target path or chain name")

    @classmethod
    def node(
        cls, *, node_port: int | None = None, eth_rpc_port: int | None = None, verbose: bool = False
    ) -> LaunchRequest:
        return cls(
            kind=LaunchKind.NODE,
            verbose=verbose,
            ports=PortOverrides(node_port=node_port, eth_rpc_port=eth_rpc_port),
            require_parachain=False,
        )

    @classmethod
    def network(cls, path: str | Path, *, verbose: bool = False, **kwargs: object) -> LaunchRequest:
        return cls(kind=LaunchKind.NETWORK, target=str(path), verbose=verbose, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def chain(cls, name: str, *, verbose: bool = False, **kwargs: object) -> LaunchRequest:
        return cls(kind=LaunchKind.CHAIN, target=name, verbose=verbose, **kwargs)  # type: ignore[arg-type]

    def command_args(self) -> list[str]:
        """Argument vector for the external program."""
        match self.kind:
            case LaunchKind.NODE:
                args = ["up", "ink-node", "-y", "--detach"]
                if self.ports.node_port is not None:
                    args += ["--ink-node-port", str(self.ports.node_port)]
                if self.ports.eth_rpc_port is not None:
                    args += ["--eth-rpc-port", str(self.ports.eth_rpc_port)]
            case LaunchKind.NETWORK:
                args = ["up", "network", str(self.target), "-y"]
            case LaunchKind.CHAIN:
                args = ["up", str(self.target), "-y"]
        if self.verbose:
            args.append("--verbose")
        return args


@dataclass(slots=True, frozen=True)
class Ready:
    topology: Topology
    process_ids: tuple[int, ...]
    raw_log: str
    descriptor_path: Path | None = None
    # registry key, set once the launch is recorded
    launch_id: str | None = None

    is_ok: Literal[True] = True

    @property
    def base_dir(self) -> Path | None:
        return self.descriptor_path.parent if self.descriptor_path else None

    def unwrap(self) -> Topology:
        return self.topology


@dataclass(slots=True, frozen=True)
class Failed:
    error: LauncherError
    raw_log: str

    is_ok: Literal[False] = False

    def unwrap(self) -> Topology:
        raise self.error


@dataclass(slots=True, frozen=True)
class TimedOut:
    error: LauncherError
    raw_log: str

    is_ok: Literal[False] = False

    def unwrap(self) -> Topology:
        raise self.error


LaunchOutcome: TypeAlias = Ready | Failed | TimedOut
