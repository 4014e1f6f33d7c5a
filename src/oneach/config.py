"""Configuration loader for oneach.

Settings given on the command line take precedence; anything left unspecified
is read from the YAML configuration file and finally from built-in defaults::

    topology: /opt/smartdc/manta-deployment/etc/topology.yaml
    log_dir: /var/tmp/oneach
    transport:
      user: root
      port: 22
      ssh_key: ~/.ssh/id_rsa
      known_hosts: ~/.ssh/known_hosts
      connect_timeout: 5
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = Path("/opt/smartdc/manta-deployment/etc/oneach.yaml")
CONFIG_PATH_ENV = "ONEACH_CONFIG"

DEFAULT_USER = "root"
DEFAULT_PORT = 22
DEFAULT_SSH_KEY = "~/.ssh/id_rsa"
DEFAULT_CONNECT_TIMEOUT = 5.0


@dataclass
class TransportConfig:
    """How to reach compute nodes. ``None`` means "not specified"."""

    user: str | None = None
    port: int | None = None
    ssh_key: Path | None = None
    known_hosts: Path | None = None  # None skips host key verification
    connect_timeout: float | None = None

    @property
    def complete(self) -> bool:
        return None not in (self.user, self.port, self.ssh_key, self.connect_timeout)

    def merged_over(self, base: TransportConfig) -> TransportConfig:
        """Values from ``self`` where given, otherwise from ``base``."""
        values = {
            f.name: getattr(self, f.name)
            if getattr(self, f.name) is not None
            else getattr(base, f.name)
            for f in fields(self)
        }
        return TransportConfig(**values)

    def with_defaults(self) -> TransportConfig:
        return replace(
            self,
            user=self.user if self.user is not None else DEFAULT_USER,
            port=self.port if self.port is not None else DEFAULT_PORT,
            ssh_key=(
                self.ssh_key
                if self.ssh_key is not None
                else Path(DEFAULT_SSH_KEY).expanduser()
            ),
            connect_timeout=(
                self.connect_timeout
                if self.connect_timeout is not None
                else DEFAULT_CONNECT_TIMEOUT
            ),
        )


@dataclass
class Config:
    """Main configuration for a run."""

    topology: Path | None = None
    transport: TransportConfig = field(default_factory=TransportConfig)
    log_dir: Path | None = None
    sysinfo_command: list[str] = field(default_factory=lambda: ["sysinfo"])
    zonename_command: list[str] = field(default_factory=lambda: ["zonename"])
    source_path: Path | None = None  # Path to the original config file

    @property
    def complete(self) -> bool:
        return self.topology is not None and self.transport.complete

    def merged_over(self, base: Config) -> Config:
        return Config(
            topology=self.topology if self.topology is not None else base.topology,
            transport=self.transport.merged_over(base.transport),
            log_dir=self.log_dir if self.log_dir is not None else base.log_dir,
            sysinfo_command=base.sysinfo_command,
            zonename_command=base.zonename_command,
            source_path=base.source_path,
        )


def default_config_path(env: dict[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    if env.get(CONFIG_PATH_ENV):
        return Path(env[CONFIG_PATH_ENV]).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(config_path: str | Path) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    config = _parse_config(raw or {})
    config.source_path = config_path
    return config


def _optional_path(value: Any) -> Path | None:
    if value is None:
        return None
    return Path(str(value)).expanduser()


def _parse_transport(raw: dict[str, Any]) -> TransportConfig:
    """Parse the transport section."""
    transport_raw = raw.get("transport") or {}
    if not isinstance(transport_raw, dict):
        raise ValueError("'transport' must be a mapping")

    port = transport_raw.get("port")
    if port is not None and (not isinstance(port, int) or port <= 0):
        raise ValueError(f"transport port must be a positive integer, got: {port}")

    timeout = transport_raw.get("connect_timeout")
    if timeout is not None:
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError(
                f"transport connect_timeout must be a positive number, got: {timeout}"
            )
        timeout = float(timeout)

    return TransportConfig(
        user=transport_raw.get("user"),
        port=port,
        ssh_key=_optional_path(transport_raw.get("ssh_key")),
        known_hosts=_optional_path(transport_raw.get("known_hosts")),
        connect_timeout=timeout,
    )


def _parse_command(raw: dict[str, Any], key: str, default: list[str]) -> list[str]:
    value = raw.get(key)
    if value is None:
        return list(default)
    if isinstance(value, str):
        return value.split()
    if not isinstance(value, list) or not value:
        raise ValueError(f"'{key}' must be a command line")
    return [str(v) for v in value]


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    if not isinstance(raw, dict):
        raise ValueError("configuration must be a mapping")

    return Config(
        topology=_optional_path(raw.get("topology")),
        transport=_parse_transport(raw),
        log_dir=_optional_path(raw.get("log_dir")),
        sysinfo_command=_parse_command(raw, "sysinfo_command", ["sysinfo"]),
        zonename_command=_parse_command(raw, "zonename_command", ["zonename"]),
    )
