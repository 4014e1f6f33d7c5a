"""Remote execution and file transfer on compute nodes.

Every operation addresses a compute node's global zone. Commands for zones
are wrapped by the caller to enter the zone; file transfers for zones use
paths under the zone's root filesystem as seen from the global zone.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shlex
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Protocol

import asyncssh

from .config import TransportConfig
from .errors import TransferError, TransportConnectError, TransportError
from .results import Completed

logger = logging.getLogger(__name__)

# Type alias for compute node address lookup
AddressLookup = Callable[[str], str]  # (server_uuid) -> host


class Transport(Protocol):
    """Remote execution mechanism used by the dispatcher.

    Operations raise TransportError when they cannot be carried out. They do
    not time out by themselves; callers bound the wait.
    """

    async def connect(self) -> None: ...

    async def exec(self, node_id: str, script: str) -> Completed: ...

    async def push(
        self, node_id: str, local_path: str, remote_dir: str, clobber: bool
    ) -> None: ...

    async def pull(self, node_id: str, remote_file: str, local_file: str) -> None: ...

    def close(self) -> None: ...


class TransportFactory(Protocol):
    def __call__(
        self,
        config: TransportConfig,
        node_address: AddressLookup,
        bind_ip: str | None,
    ) -> Transport: ...


class SSHTransport:
    """Runs operations over SSH, one connection per operation."""

    def __init__(
        self,
        config: TransportConfig,
        node_address: AddressLookup,
        bind_ip: str | None = None,
    ):
        self.config = config
        self.node_address = node_address
        self.bind_ip = bind_ip
        self._client_keys: list[asyncssh.SSHKey] | None = None
        self._known_hosts: asyncssh.SSHKnownHosts | None = None
        self._connections: set[asyncssh.SSHClientConnection] = set()
        self._closed = False

    async def connect(self) -> None:
        """Load credentials so that operations can be started."""
        if self.config.ssh_key is None:
            raise TransportConnectError("SSH transport: no SSH key configured")
        try:
            self._client_keys = [asyncssh.read_private_key(str(self.config.ssh_key))]
            if self.config.known_hosts is not None:
                self._known_hosts = asyncssh.read_known_hosts(
                    str(self.config.known_hosts)
                )
        except (asyncssh.Error, asyncssh.KeyImportError, OSError) as e:
            raise TransportConnectError(f"SSH transport: {e}") from e

        logger.debug(
            "ssh transport ready (user=%s port=%s bind_ip=%s)",
            self.config.user,
            self.config.port,
            self.bind_ip,
        )

    @asynccontextmanager
    async def _connect(self, node_id: str) -> AsyncIterator[asyncssh.SSHClientConnection]:
        if self._closed or self._client_keys is None:
            raise RuntimeError("transport is not connected")

        host = self.node_address(node_id)
        logger.debug("connecting to %s@%s:%s", self.config.user, host, self.config.port)
        async with asyncssh.connect(
            host,
            port=self.config.port,
            username=self.config.user,
            client_keys=self._client_keys,
            known_hosts=self._known_hosts,
            local_addr=(self.bind_ip, 0) if self.bind_ip else None,
            connect_timeout=self.config.connect_timeout,
        ) as conn:
            self._connections.add(conn)
            try:
                yield conn
            finally:
                self._connections.discard(conn)

    async def exec(self, node_id: str, script: str) -> Completed:
        try:
            async with self._connect(node_id) as conn:
                result = await conn.run(
                    "bash -c " + shlex.quote(script), check=False, encoding=None
                )
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"exec on {node_id}: {e}") from e

        exit_status = result.exit_status
        if exit_status is None:
            # Killed by a signal; report it the way a shell would.
            exit_status = 128 + abs(result.returncode or 0)
        return Completed(
            exit_status=exit_status,
            stdout=_as_bytes(result.stdout),
            stderr=_as_bytes(result.stderr),
        )

    async def push(
        self, node_id: str, local_path: str, remote_dir: str, clobber: bool
    ) -> None:
        remote_file = posixpath.join(remote_dir, os.path.basename(local_path))
        try:
            async with self._connect(node_id) as conn:
                async with conn.start_sftp_client() as sftp:
                    if not clobber and await sftp.exists(remote_file):
                        raise TransferError(f'file "{remote_file}" already exists')
                    await sftp.put(local_path, remote_file)
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"send {local_path} to {node_id}: {e}") from e

    async def pull(self, node_id: str, remote_file: str, local_file: str) -> None:
        try:
            async with self._connect(node_id) as conn:
                async with conn.start_sftp_client() as sftp:
                    await sftp.get(remote_file, local_file)
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"receive {remote_file} from {node_id}: {e}") from e

    def close(self) -> None:
        self._closed = True
        for conn in list(self._connections):
            conn.close()
        self._connections.clear()


def _as_bytes(data: str | bytes | None) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode()
    return data


def create_ssh_transport(
    config: TransportConfig, node_address: AddressLookup, bind_ip: str | None
) -> SSHTransport:
    return SSHTransport(config, node_address, bind_ip)
