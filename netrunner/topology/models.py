from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from netrunner.errors import ParseError


# host is a name, IPv4, or bracketed IPv6; anything after the port is dropped
WS_URL_RE = re.compile(r"ws://(?P<host>\[[0-9A-Fa-f:.]+\]|[A-Za-z0-9_.\-]+):(?P<port>\d{1,5})(?!\d)")


class EndpointRole(StrEnum):
    RELAY = "relay"
    CHAIN = "chain"


@dataclass(slots=True, frozen=True)
class NetworkEndpoint:
    """A live WebSocket endpoint of the launched topology."""

    role: EndpointRole
    host: str
    port: int

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @classmethod
    def from_uri(cls, uri: str, role: EndpointRole) -> NetworkEndpoint:
        match = WS_URL_RE.search(uri.strip())
        if match is None:
            raise ParseError(f"not a ws://host:port uri: {uri!r}", field="ws_uri")
        port = int(match.group("port"))
        if not 0 < port < 65536:
            raise ParseError(f"port out of range in {uri!r}", field="ws_uri")
        return cls(role=role, host=match.group("host"), port=port)


@dataclass(slots=True, frozen=True)
class Topology:
    """Endpoints recovered from a descriptor or from output text."""

    relay: NetworkEndpoint
    chains: tuple[NetworkEndpoint, ...] = field(default_factory=tuple)
    # Ethereum RPC proxy started next to a single node, if any
    eth_rpc: NetworkEndpoint | None = None

    @property
    def endpoints(self) -> tuple[NetworkEndpoint, ...]:
        return (self.relay, *self.chains)

    @property
    def ports(self) -> list[int]:
        ports = [endpoint.port for endpoint in self.endpoints]
        if self.eth_rpc is not None:
            ports.append(self.eth_rpc.port)
        return ports


# --- descriptor schema -------------------------------------------------------------------------


class DescriptorNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    ws_uri: str | None = None


class RelaySection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nodes: list[DescriptorNode] = Field(default_factory=list)


class ParachainEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # key of the entry when parachains are published as a mapping
    id: str | None = None
    collators: list[DescriptorNode] = Field(default_factory=list)


class TopologyDescriptor(BaseModel):
    """
    zombie.json as written by the external program.

    `parachains` arrives either as a list of entries or as a mapping keyed by
    para id whose values are a list of entries (or a single entry); it is
    normalised here into one ordered list.
    """

    model_config = ConfigDict(extra="ignore")

    relay: RelaySection
    parachains: list[ParachainEntry] = Field(default_factory=list)

    @field_validator("parachains", mode="before")
    @classmethod
    def _normalise_parachains(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            entries: list[dict[str, Any]] = []
            for para_id, chains in value.items():
                items = chains if isinstance(chains, list) else [chains]
                for item in items:
                    if isinstance(item, dict):
                        entries.append({"id": str(para_id), **item})
                    else:
                        entries.append(item)
            return entries
        return value
