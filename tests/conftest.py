"""Shared fixtures: a fake deployment and a recording transport."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from oneach.config import Config, TransportConfig
from oneach.dispatcher import DispatchOptions, Dispatcher
from oneach.errors import TransportError
from oneach.results import Completed
from oneach.scope import ScopeSpec
from oneach.sysinfo import HostIdentity
from oneach.topology import ComputeNode, TopologySnapshot, ZoneInfo


def make_snapshot() -> TopologySnapshot:
    """Nine zones spread over two compute nodes.

    zone5 is a postgres zone and zone8 a marlin zone; every other zone is a
    webapi zone. Odd-numbered zones run on cn0, even-numbered zones on cn1.
    """
    snapshot = TopologySnapshot(services=["webapi", "postgres", "moray", "marlin"])
    snapshot.compute_nodes["cn0"] = ComputeNode("cn0", "CN0", "10.0.1.1")
    snapshot.compute_nodes["cn1"] = ComputeNode("cn1", "CN1", "10.0.1.2")

    for i in range(9):
        zonename = f"zone{i + 1}"
        service = {"zone5": "postgres", "zone8": "marlin"}.get(zonename, "webapi")
        snapshot.zones[zonename] = ZoneInfo(
            zonename=zonename,
            service=service,
            server_uuid=f"cn{i % 2}",
            admin_ip=f"10.0.0.{i + 1}",
        )
    return snapshot


class FakeTopologyProvider:
    def __init__(self, snapshot: TopologySnapshot | None = None):
        self.snapshot = snapshot or make_snapshot()
        self.path: Path | None = None
        self.loads = 0
        self.closes = 0

    async def load(self) -> TopologySnapshot:
        self.loads += 1
        return self.snapshot

    def close(self) -> None:
        self.closes += 1


@dataclass
class MockTransport:
    """Records every call and answers like a well-behaved compute node."""

    delay: float = 0.0
    fail_nodes: set[str] = field(default_factory=set)
    hang_nodes: set[str] = field(default_factory=set)
    connect_error: Exception | None = None
    crash_nodes: set[str] = field(default_factory=set)

    calls: list[dict[str, Any]] = field(default_factory=list)
    outstanding: int = 0
    max_outstanding: int = 0
    connects: int = 0
    closes: int = 0
    config: TransportConfig | None = None
    bind_ip: str | None = None

    async def _operation(self, node_id: str) -> None:
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        try:
            if node_id in self.hang_nodes:
                await asyncio.sleep(3600)
            await asyncio.sleep(self.delay)
            if node_id in self.fail_nodes:
                raise TransportError(f"node {node_id} unreachable")
        finally:
            self.outstanding -= 1

    async def connect(self) -> None:
        self.connects += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def exec(self, node_id: str, script: str) -> Completed:
        self.calls.append({"method": "exec", "node_id": node_id, "script": script})
        if node_id in self.crash_nodes:
            raise ValueError("boom")
        await self._operation(node_id)
        in_zone = "zlogin" in script
        return Completed(0, b"in zone" if in_zone else b"global zone", b"")

    async def push(
        self, node_id: str, local_path: str, remote_dir: str, clobber: bool
    ) -> None:
        self.calls.append(
            {
                "method": "push",
                "node_id": node_id,
                "local_path": local_path,
                "remote_dir": remote_dir,
                "clobber": clobber,
            }
        )
        await self._operation(node_id)

    async def pull(self, node_id: str, remote_file: str, local_file: str) -> None:
        self.calls.append(
            {
                "method": "pull",
                "node_id": node_id,
                "remote_file": remote_file,
                "local_file": local_file,
            }
        )
        await self._operation(node_id)

    def close(self) -> None:
        self.closes += 1


def complete_config(**kwargs: Any) -> Config:
    return Config(
        topology=Path("/etc/oneach/topology.yaml"),
        transport=TransportConfig(
            user="root", port=22, ssh_key=Path("/root/.ssh/id_rsa"), connect_timeout=5.0
        ),
        **kwargs,
    )


@dataclass
class Harness:
    transport: MockTransport
    topology: FakeTopologyProvider
    identities: list[HostIdentity] = field(default_factory=list)

    def dispatcher(
        self,
        scope: ScopeSpec,
        request: Any,
        config: Config | None = None,
        **options: Any,
    ) -> Dispatcher:
        transport = self.transport
        topology = self.topology
        identities = self.identities

        def topology_factory(path):
            topology.path = path
            return topology

        def transport_factory(config, node_address, bind_ip):
            transport.config = config
            transport.bind_ip = bind_ip
            return transport

        async def host_identity(config):
            identity = HostIdentity("server", "cn1")
            identities.append(identity)
            return identity

        hooks = {
            name: options.pop(name)
            for name in ("config_path", "status_stream", "on_result", "on_status")
            if name in options
        }
        return Dispatcher(
            scope,
            request,
            options=DispatchOptions(**options),
            config=config or complete_config(),
            topology_factory=topology_factory,
            transport_factory=transport_factory,
            host_identity=host_identity,
            **hooks,
        )


@pytest.fixture
def harness() -> Harness:
    return Harness(transport=MockTransport(), topology=FakeTopologyProvider())
