"""
Launch bookkeeping and teardown.
"""

from __future__ import annotations

from .ports import is_port_open, wait_port_open, wait_ports_released
from .registry import LaunchRecord, LaunchRegistry
from .shared import SharedNode
from .teardown import TeardownCoordinator, TeardownReport


__all__ = [
    "LaunchRecord",
    "LaunchRegistry",
    "SharedNode",
    "TeardownCoordinator",
    "TeardownReport",
    "is_port_open",
    "wait_port_open",
    "wait_ports_released",
]
