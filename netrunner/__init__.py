"""
pop-netrunner: launch, observe and tear down local blockchain networks driven by the `pop` CLI.
"""

from __future__ import annotations

from .errors import (
    FatalOutputError,
    LaunchError,
    LauncherError,
    ParseError,
    ReadinessTimeoutError,
    ResolutionError,
    TeardownError,
)
from .lifecycle import LaunchRegistry, SharedNode, TeardownCoordinator
from .orchestrator import Orchestrator
from .runner import Failed, LaunchKind, LaunchOutcome, LaunchRequest, Ready, TimedOut
from .topology import EndpointRole, NetworkEndpoint, Topology


__all__ = [
    "EndpointRole",
    "Failed",
    "FatalOutputError",
    "LaunchError",
    "LaunchKind",
    "LaunchOutcome",
    "LaunchRegistry",
    "LaunchRequest",
    "LauncherError",
    "NetworkEndpoint",
    "Orchestrator",
    "ParseError",
    "ReadinessTimeoutError",
    "Ready",
    "ResolutionError",
    "SharedNode",
    "TeardownCoordinator",
    "TeardownError",
    "TimedOut",
    "Topology",
]
