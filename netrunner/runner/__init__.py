"""
Public API for spawning the external program and watching it become ready.
"""

from __future__ import annotations

from .control import (
    Failed,
    LaunchKind,
    LaunchOutcome,
    LaunchRequest,
    PortOverrides,
    Ready,
    TimedOut,
)
from .process import ProcessCommand, ProcessHandle, kill, spawn
from .readiness import DescriptorReadiness, StreamReadiness
from .resolver import resolve_binary


__all__ = [
    "DescriptorReadiness",
    "Failed",
    "LaunchKind",
    "LaunchOutcome",
    "LaunchRequest",
    "PortOverrides",
    "ProcessCommand",
    "ProcessHandle",
    "Ready",
    "StreamReadiness",
    "TimedOut",
    "kill",
    "resolve_binary",
    "spawn",
]
