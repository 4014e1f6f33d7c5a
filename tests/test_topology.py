"""Topology loading and lookup tests."""

from __future__ import annotations

import asyncio

import pytest

from oneach.errors import TopologyError
from oneach.topology import YamlTopologyProvider, parse_topology

from .conftest import make_snapshot

TOPOLOGY = """\
services: [webapi, moray, marlin]
compute_nodes:
  - server_uuid: cn0
    hostname: RA10130
    admin_ip: 10.1.0.12
  - server_uuid: cn1
    hostname: RA10131
zones:
  - zonename: z1
    service: webapi
    server_uuid: cn0
    admin_ip: 10.1.0.40
  - zonename: z2
    service: postgres
    server_uuid: cn1
  - zonename: z3
    service: webapi
    server_uuid: cn-remote
"""


def _load(path):
    provider = YamlTopologyProvider(path)
    try:
        return asyncio.run(provider.load())
    finally:
        provider.close()


def test_load_topology(tmp_path) -> None:
    path = tmp_path / "topology.yaml"
    path.write_text(TOPOLOGY)

    snapshot = _load(path)

    assert snapshot.services == ["webapi", "moray", "marlin", "postgres"]
    assert sorted(snapshot.compute_nodes) == ["cn0", "cn1"]
    assert snapshot.compute_nodes["cn0"].hostname == "RA10130"
    assert [z.zonename for z in snapshot.all_zones()] == ["z1", "z2", "z3"]
    assert snapshot.zones["z3"].server_uuid == "cn-remote"
    assert snapshot.compute_node("cn-remote") is None


def test_missing_topology_file(tmp_path) -> None:
    with pytest.raises(TopologyError, match="not found"):
        _load(tmp_path / "topology.yaml")


@pytest.mark.parametrize(
    "text",
    [
        "zones: [\n",
        "- a\n- b\n",
        "compute_nodes:\n  - hostname: RA1\n",
        "zones:\n  - service: webapi\n    server_uuid: cn0\n",
        "zones:\n  - zonename: z1\n    server_uuid: cn0\n",
    ],
)
def test_invalid_topology(tmp_path, text) -> None:
    path = tmp_path / "topology.yaml"
    path.write_text(text)
    with pytest.raises(TopologyError):
        _load(path)


def test_hostname_defaults_to_uuid() -> None:
    snapshot = parse_topology({"compute_nodes": [{"server_uuid": "cn9"}]})
    assert snapshot.compute_nodes["cn9"].hostname == "cn9"
    assert snapshot.node_address("cn9") == "cn9"


def test_find_admin_ip() -> None:
    snapshot = make_snapshot()

    assert snapshot.find_admin_ip("server", "cn1") == "10.0.1.2"
    assert snapshot.find_admin_ip("zone", "zone3") == "10.0.0.3"
    with pytest.raises(TopologyError):
        snapshot.find_admin_ip("server", "cn9")
    with pytest.raises(TopologyError):
        snapshot.find_admin_ip("zone", "zone99")
    with pytest.raises(ValueError):
        snapshot.find_admin_ip("vm", "zone3")


def test_node_address() -> None:
    snapshot = make_snapshot()
    assert snapshot.node_address("cn0") == "10.0.1.1"
    with pytest.raises(TopologyError):
        snapshot.node_address("cn9")
