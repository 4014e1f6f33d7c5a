from __future__ import annotations

import asyncio
import json
import shutil

import pytest

from oneach.errors import OneachError
from oneach.sysinfo import HostIdentity, local_identity, parse_sysinfo

needs_shell = pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available")


def _echo(text: str) -> list[str]:
    return ["sh", "-c", f"printf '%s' '{text}'"]


def test_parse_sysinfo() -> None:
    assert parse_sysinfo(json.dumps({"UUID": "cn0", "Hostname": "RA1"})) == "cn0"


@pytest.mark.parametrize("output", ["", "{", "[]", '{"Hostname": "RA1"}', '{"UUID": ""}'])
def test_parse_bad_sysinfo(output) -> None:
    with pytest.raises(OneachError, match="failed to select local IP"):
        parse_sysinfo(output)


@needs_shell
def test_identity_in_zone() -> None:
    identity = asyncio.run(local_identity(["false"], _echo("zone7\n")))
    assert identity == HostIdentity("zone", "zone7")


@needs_shell
def test_identity_in_global_zone() -> None:
    identity = asyncio.run(local_identity(_echo('{"UUID": "cn3"}'), _echo("global")))
    assert identity == HostIdentity("server", "cn3")


@needs_shell
def test_identity_without_zones() -> None:
    identity = asyncio.run(
        local_identity(_echo('{"UUID": "cn3"}'), ["/nonexistent/zonename"])
    )
    assert identity == HostIdentity("server", "cn3")


@needs_shell
def test_sysinfo_failure() -> None:
    with pytest.raises(OneachError, match="failed to select local IP"):
        asyncio.run(local_identity(["sh", "-c", "exit 3"], _echo("global")))
