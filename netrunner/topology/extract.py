"""
Endpoint extraction.

- extract_from_descriptor() / read_descriptor(): structured zombie.json
- scan_endpoints(): ws:// urls behind known markers in free-form output
- topology_from_urls(): classify scanned urls into relay / chains / eth rpc
- parse_pids(): pid lists announced by the external program
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from netrunner.errors import ParseError
from netrunner.topology.models import (
    WS_URL_RE,
    DescriptorNode,
    EndpointRole,
    NetworkEndpoint,
    Topology,
    TopologyDescriptor,
)


RELAY_FIELD = "relay.nodes[*].ws_uri"
PARACHAIN_FIELD = "parachains[*].collators[*].ws_uri"

# authoritative markers first; `rpc=` is the query string of a portal link
AUTHORITATIVE_MARKERS: tuple[str, ...] = ("url: ws://", "endpoint: ws://")
HINT_MARKERS: tuple[str, ...] = ("rpc=ws://",)

_PID_TOKEN_RE = re.compile(r"\d+")


def _first_endpoint(nodes: Iterable[DescriptorNode], role: EndpointRole) -> NetworkEndpoint | None:
    """First node whose ws_uri parses; malformed ones are skipped."""
    for node in nodes:
        if not node.ws_uri:
            continue
        try:
            return NetworkEndpoint.from_uri(node.ws_uri, role)
        except ParseError:
            continue
    return None


def extract_from_descriptor(data: Any, *, require_parachain: bool = True) -> Topology:
    """Build a Topology from a decoded descriptor; ParseError names the missing field."""
    if not isinstance(data, dict):
        raise ParseError("descriptor root must be an object", field="relay")
    if "relay" not in data:
        raise ParseError(f"missing {RELAY_FIELD} in descriptor", field=RELAY_FIELD)
    try:
        descriptor = TopologyDescriptor.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(part) for part in first.get("loc", ())) or "relay"
        raise ParseError(f"invalid descriptor at {where}: {first.get('msg')}", field=where) from exc

    relay = _first_endpoint(descriptor.relay.nodes, EndpointRole.RELAY)
    if relay is None:
        raise ParseError(f"missing {RELAY_FIELD} in descriptor", field=RELAY_FIELD)

    chains: list[NetworkEndpoint] = []
    for entry in descriptor.parachains:
        endpoint = _first_endpoint(entry.collators, EndpointRole.CHAIN)
        if endpoint is not None:
            chains.append(endpoint)

    if require_parachain and not chains:
        raise ParseError(f"missing {PARACHAIN_FIELD} in descriptor", field=PARACHAIN_FIELD)

    return Topology(relay=relay, chains=tuple(chains))


def read_descriptor(path: Path, *, require_parachain: bool = True) -> Topology:
    """Read and parse a descriptor file. Missing or half-written files raise ParseError."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ParseError(f"descriptor not found: {path}", field="path") from exc
    except OSError as exc:
        raise ParseError(f"cannot read descriptor {path}: {exc}", field="path") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"descriptor {path} is not valid JSON yet: {exc}", field="json") from exc
    return extract_from_descriptor(data, require_parachain=require_parachain)


def _url_after(line: str, marker: str) -> str | None:
    index = line.find(marker)
    if index < 0:
        return None
    # the marker ends with "ws://"; match from there
    start = index + len(marker) - len("ws://")
    match = WS_URL_RE.match(line, start)
    if match is None:
        return None
    return f"ws://{match.group('host')}:{match.group('port')}"


def scan_line(line: str) -> tuple[str, bool] | None:
    """Return (url, authoritative) for a line carrying an endpoint marker."""
    for marker in AUTHORITATIVE_MARKERS:
        url = _url_after(line, marker)
        if url is not None:
            return url, True
    for marker in HINT_MARKERS:
        url = _url_after(line, marker)
        if url is not None:
            return url, False
    return None


class EndpointScanner:
    """Incremental endpoint collection over output lines, in first-seen order."""

    def __init__(self) -> None:
        self._urls: list[str] = []
        self._authoritative: set[str] = set()
        self._pending_hint: str | None = None

    def feed(self, line: str) -> None:
        found = scan_line(line)
        if found is None:
            return
        url, authoritative = found
        if authoritative:
            hint, self._pending_hint = self._pending_hint, None
            # a portal hint is superseded by the url line that follows it
            if hint is not None and hint != url and hint not in self._authoritative:
                if url in self._urls:
                    self._urls.remove(hint)
                else:
                    self._urls[self._urls.index(hint)] = url
            elif url not in self._urls:
                self._urls.append(url)
            self._authoritative.add(url)
            return
        if url not in self._urls:
            self._urls.append(url)
            self._pending_hint = url

    @property
    def urls(self) -> list[str]:
        return list(self._urls)


def scan_endpoints(lines: Iterable[str]) -> list[str]:
    scanner = EndpointScanner()
    for line in lines:
        scanner.feed(line)
    return scanner.urls


def topology_from_urls(
    urls: Sequence[str],
    *,
    relay_port: int | None = None,
    aux_ports: Iterable[int] = (),
) -> Topology:
    """Relay is the url on `relay_port` (else the first one); aux ports are the eth rpc."""
    if not urls:
        raise ParseError("no ws:// endpoint found in output", field="url")
    aux = set(aux_ports)
    parsed = [NetworkEndpoint.from_uri(u, EndpointRole.CHAIN) for u in urls]

    eth_rpc = next((e for e in parsed if e.port in aux), None)
    candidates = [e for e in parsed if e.port not in aux]
    if not candidates:
        raise ParseError("no relay ws:// endpoint found in output", field="url")

    relay = next((e for e in candidates if relay_port is not None and e.port == relay_port), None)
    if relay is None:
        relay = candidates[0]
    chains = tuple(e for e in candidates if e is not relay)

    return Topology(
        relay=NetworkEndpoint(EndpointRole.RELAY, relay.host, relay.port),
        chains=chains,
        eth_rpc=eth_rpc,
    )


def parse_pids(text: str) -> list[int]:
    """Pids from `pids: 1 2` or `kill -9 1 2` lines; first matching line wins."""
    for line in text.splitlines():
        trimmed = line.strip().lstrip("│").strip()
        rest: str | None = None
        if trimmed.startswith("pids:"):
            rest = trimmed[len("pids:") :]
        elif "kill -9" in trimmed:
            rest = trimmed[trimmed.index("kill -9") + len("kill -9") :]
        if rest is None:
            continue
        pids = [int(token) for token in _PID_TOKEN_RE.findall(rest.split("`")[0])]
        if pids:
            return pids
    return []
