"""
Topology data model

Node addresses, placement labels and the sentinel values returned when no
source knows where a node lives.
"""

import ipaddress
from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple

DEFAULT_DC = "UNKNOWN-DC"
DEFAULT_RACK = "UNKNOWN-RACK"

DEFAULT_PORT = 7000


class ApplicationState(Enum):
    """Keys a node publishes about itself in the membership state"""
    DC = "datacenter"
    RACK = "rack"


@dataclass(frozen=True, order=True)
class NodeAddress:
    """Address and port identifying a cluster member"""
    host: str
    port: int = DEFAULT_PORT

    @classmethod
    def from_string(cls, value: str) -> 'NodeAddress':
        """
        Parse an address

        Accepts "host:port", "[v6-host]:port", a bare IPv6 address or a bare host.
        IP addresses are normalised so that equal addresses compare equal.
        """
        value = value.strip()
        if not value:
            raise ValueError("Empty node address")

        host, port = value, DEFAULT_PORT
        if value.startswith("["):
            end = value.find("]")
            if end < 0:
                raise ValueError(f"Invalid node address: {value}")
            host = value[1:end]
            rest = value[end + 1:]
            if rest:
                if not rest.startswith(":"):
                    raise ValueError(f"Invalid node address: {value}")
                port = int(rest[1:])
        elif value.count(":") == 1:
            host, port_str = value.split(":")
            port = int(port_str)

        try:
            host = str(ipaddress.ip_address(host))
        except ValueError:
            # Hostname, keep as given
            pass

        if not host:
            raise ValueError(f"Invalid node address: {value}")

        return cls(host, port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class TopologyLabel(NamedTuple):
    """Datacenter and rack of a node"""
    datacenter: str
    rack: str


@dataclass(frozen=True)
class PeerPlacement:
    """Last known placement of a node as recorded by the persisted store"""
    datacenter: str
    rack: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PeerPlacement':
        """Build from a stored record, accepting "data_center" as the datacenter key"""
        datacenter = data.get("datacenter", data.get("data_center")) or ""
        rack = data.get("rack") or ""
        return cls(datacenter=str(datacenter), rack=str(rack))
