"""Identifying the local system, for picking a file transfer bind address."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

from .errors import OneachError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostIdentity:
    """What the local system is, in topology terms."""

    belongs_to_type: str  # "zone" or "server"
    belongs_to_uuid: str


async def _run(argv: list[str]) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise OneachError(f"exec {argv[0]}: {e}") from e

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise OneachError(
            f"{argv[0]} exited with status {proc.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )
    return stdout.decode(errors="replace")


async def local_zonename(zonename_command: list[str]) -> str:
    """Name of the zone we're running in ("global" outside any zone)."""
    try:
        return (await _run(zonename_command)).strip() or "global"
    except OneachError as e:
        # Systems without zones have no "zonename" command.
        logger.debug("assuming global zone: %s", e)
        return "global"


def parse_sysinfo(output: str) -> str:
    """Extract the server uuid from "sysinfo" output."""
    try:
        parsed = json.loads(output)
    except ValueError as e:
        raise OneachError(f"failed to select local IP: parsing sysinfo: {e}") from e

    uuid = parsed.get("UUID") if isinstance(parsed, dict) else None
    if not isinstance(uuid, str) or not uuid:
        raise OneachError("failed to select local IP: failed to extract UUID from sysinfo")
    return uuid


async def local_identity(
    sysinfo_command: list[str], zonename_command: list[str]
) -> HostIdentity:
    zonename = await local_zonename(zonename_command)
    if zonename != "global":
        return HostIdentity("zone", zonename)

    try:
        output = await _run(sysinfo_command)
    except OneachError as e:
        raise OneachError(f"failed to select local IP: {e}") from e
    return HostIdentity("server", parse_sysinfo(output))
