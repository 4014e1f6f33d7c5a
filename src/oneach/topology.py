"""Deployment topology: which zones run where.

A topology snapshot lists the compute nodes of the local datacenter and every
deployed zone, with the service each zone belongs to and the compute node it
runs on. Zones may reference compute nodes that are not part of the snapshot
(they live in another datacenter); those zones are known by name but cannot be
operated on from here.

The snapshot is read from a YAML file::

    services: [webapi, moray, postgres, marlin]
    compute_nodes:
      - server_uuid: 44454c4c-...
        hostname: RA10130
        admin_ip: 10.1.0.12
    zones:
      - zonename: 0c6a0bde-...
        service: webapi
        server_uuid: 44454c4c-...
        admin_ip: 10.1.0.40
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol

import yaml

from .errors import ConfigurationError, TopologyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComputeNode:
    """A physical server in the local datacenter."""

    server_uuid: str
    hostname: str
    admin_ip: str | None = None


@dataclass(frozen=True)
class ZoneInfo:
    """A deployed zone."""

    zonename: str
    service: str
    server_uuid: str
    admin_ip: str | None = None


@dataclass
class TopologySnapshot:
    """Point-in-time view of the deployment."""

    services: list[str] = field(default_factory=list)
    compute_nodes: dict[str, ComputeNode] = field(default_factory=dict)
    zones: dict[str, ZoneInfo] = field(default_factory=dict)

    def all_zones(self) -> Iterator[ZoneInfo]:
        return iter(self.zones.values())

    def compute_node(self, server_uuid: str) -> ComputeNode | None:
        return self.compute_nodes.get(server_uuid)

    def each_zone_by_filter(
        self,
        zones: Iterable[str] | None = None,
        services: Iterable[str] | None = None,
        compute_nodes: Iterable[str] | None = None,
    ) -> list[ZoneInfo]:
        """Return the zones matching every filter that was given.

        Values within one filter are alternatives; separate filters must all
        match. Compute nodes may be named by hostname or by server uuid. Names
        that do not exist in the deployment are errors rather than silently
        ignored.
        """
        byzone: set[str] | None = None
        if zones is not None:
            byzone = set()
            for name in zones:
                if name not in self.zones:
                    raise ConfigurationError(f"unknown zonename: {name}")
                byzone.add(name)

        byservice: set[str] | None = None
        if services is not None:
            byservice = set()
            for name in services:
                if name not in self.services:
                    raise ConfigurationError(f'unrecognized service: "{name}"')
                byservice.add(name)

        byhost: set[str] | None = None
        if compute_nodes is not None:
            cns_by_hostname = {
                cn.hostname: cn.server_uuid for cn in self.compute_nodes.values()
            }
            byhost = set()
            for name in compute_nodes:
                if name in cns_by_hostname:
                    byhost.add(cns_by_hostname[name])
                elif name in self.compute_nodes:
                    byhost.add(name)
                else:
                    raise ConfigurationError(f"unknown host: {name}")

        return [
            zone
            for zone in self.zones.values()
            if (byzone is None or zone.zonename in byzone)
            and (byservice is None or zone.service in byservice)
            and (byhost is None or zone.server_uuid in byhost)
        ]

    def find_admin_ip(self, belongs_to_type: str, belongs_to_uuid: str) -> str:
        """Return the admin network address of a zone or a server."""
        if belongs_to_type == "zone":
            zone = self.zones.get(belongs_to_uuid)
            address = zone.admin_ip if zone else None
        elif belongs_to_type == "server":
            cn = self.compute_nodes.get(belongs_to_uuid)
            address = cn.admin_ip if cn else None
        else:
            raise ValueError(f"unsupported component type: {belongs_to_type}")

        if address is None:
            raise TopologyError(
                f'no admin IP found for {belongs_to_type} "{belongs_to_uuid}"'
            )
        return address

    def node_address(self, server_uuid: str) -> str:
        """Address used to reach a compute node's global zone."""
        cn = self.compute_nodes.get(server_uuid)
        if cn is None:
            raise TopologyError(f"unknown compute node: {server_uuid}")
        return cn.admin_ip or cn.hostname


class TopologyProvider(Protocol):
    """Source of deployment topology."""

    async def load(self) -> TopologySnapshot: ...

    def close(self) -> None: ...


class YamlTopologyProvider:
    """Loads a topology snapshot from a YAML file."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self.snapshot: TopologySnapshot | None = None

    async def load(self) -> TopologySnapshot:
        if not self.path.exists():
            raise TopologyError(f"topology file not found: {self.path}")

        logger.debug("loading topology from %s", self.path)
        try:
            with open(self.path) as f:
                raw = yaml.safe_load(f)
            self.snapshot = parse_topology(raw or {})
        except (yaml.YAMLError, ValueError) as e:
            raise TopologyError(f'load topology "{self.path}": {e}') from e

        logger.debug(
            "topology loaded: %d compute nodes, %d zones",
            len(self.snapshot.compute_nodes),
            len(self.snapshot.zones),
        )
        return self.snapshot

    def close(self) -> None:
        self.snapshot = None


def parse_topology(raw: dict[str, Any]) -> TopologySnapshot:
    """Parse raw YAML data into a TopologySnapshot."""
    if not isinstance(raw, dict):
        raise ValueError("topology must be a mapping")

    snapshot = TopologySnapshot()

    for cn_raw in raw.get("compute_nodes") or []:
        server_uuid = cn_raw.get("server_uuid")
        if not server_uuid:
            raise ValueError("compute node must have a 'server_uuid' field")
        snapshot.compute_nodes[server_uuid] = ComputeNode(
            server_uuid=server_uuid,
            hostname=cn_raw.get("hostname", server_uuid),
            admin_ip=cn_raw.get("admin_ip"),
        )

    for zone_raw in raw.get("zones") or []:
        zonename = zone_raw.get("zonename")
        if not zonename:
            raise ValueError("zone must have a 'zonename' field")
        service = zone_raw.get("service")
        server_uuid = zone_raw.get("server_uuid")
        if not service or not server_uuid:
            raise ValueError(
                f"zone '{zonename}' must have 'service' and 'server_uuid' fields"
            )
        snapshot.zones[zonename] = ZoneInfo(
            zonename=zonename,
            service=service,
            server_uuid=server_uuid,
            admin_ip=zone_raw.get("admin_ip"),
        )

    # Services may be listed explicitly; otherwise they are inferred from zones.
    services = list(raw.get("services") or [])
    for zone in snapshot.zones.values():
        if zone.service not in services:
            services.append(zone.service)
    snapshot.services = services

    return snapshot
