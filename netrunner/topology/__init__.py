"""
Topology extraction: descriptor schema, output scanning and descriptor discovery.
"""

from __future__ import annotations

from .discovery import find_latest_descriptor
from .extract import (
    extract_from_descriptor,
    parse_pids,
    read_descriptor,
    scan_endpoints,
    topology_from_urls,
)
from .models import EndpointRole, NetworkEndpoint, Topology, TopologyDescriptor


__all__ = [
    "EndpointRole",
    "NetworkEndpoint",
    "Topology",
    "TopologyDescriptor",
    "extract_from_descriptor",
    "find_latest_descriptor",
    "parse_pids",
    "read_descriptor",
    "scan_endpoints",
    "topology_from_urls",
]
