"""Command-line parsing tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from oneach.cli import OUTPUT_JSONSTREAM, OUTPUT_TEXT, parse_command_line
from oneach.formatters import LineMode
from oneach.operations import PullFile, PushFile, RunCommand
from oneach.scope import ScopeSpec


def test_all_zones_command() -> None:
    args = parse_command_line(["-a", "uptime"])

    assert args.scope == ScopeSpec(all_targets=True)
    assert args.request == RunCommand("uptime")
    assert args.options.concurrency == 10
    assert args.options.exec_timeout == 60.0
    assert not args.options.dry_run
    assert args.output_mode == OUTPUT_TEXT
    assert args.batched
    assert args.line_mode is LineMode.AUTO


def test_filters_accept_repeats_and_commas() -> None:
    args = parse_command_line(
        ["-z", "z1,z2", "-z", "z3", "-s", "webapi", "-S", "CN0", "-G", "date"]
    )

    assert args.scope == ScopeSpec.build(
        zonenames=["z1", "z2", "z3"],
        services=["webapi"],
        compute_nodes=["CN0"],
        use_host_context=True,
    )


def test_tuning_options() -> None:
    args = parse_command_line(
        ["-a", "-c", "3", "-T", "5", "--dry-run", "--bind-ip", "10.0.0.1", "date"]
    )

    assert args.options.concurrency == 3
    assert args.options.exec_timeout == 5.0
    assert args.options.dry_run
    assert args.options.bind_ip == "10.0.0.1"


def test_output_modes() -> None:
    assert parse_command_line(["-a", "-J", "date"]).output_mode == OUTPUT_JSONSTREAM

    immediate = parse_command_line(["-a", "-I", "date"])
    assert not immediate.batched
    assert immediate.line_mode is LineMode.MULTI

    # -N wins over the line mode implied by -I, in either order.
    for argv in (["-a", "-I", "-N", "date"], ["-a", "-N", "-I", "date"]):
        args = parse_command_line(argv)
        assert not args.batched
        assert args.line_mode is LineMode.ONE

    assert parse_command_line(["-a", "-H", "date"]).omit_header


def test_get_pushes_to_targets() -> None:
    args = parse_command_line(["-a", "-g", "/var/tmp/f", "-d", "/var/tmp", "-X"])
    assert args.request == PushFile("/var/tmp/f", "/var/tmp", clobber=True)


def test_put_pulls_from_targets() -> None:
    args = parse_command_line(["-s", "webapi", "-p", "/etc/motd", "-d", "/var/tmp/motds"])
    assert args.request == PullFile("/etc/motd", "/var/tmp/motds")


def test_transport_settings() -> None:
    args = parse_command_line(
        [
            "-a",
            "--config-file",
            "/etc/oneach.yaml",
            "--topology",
            "/srv/topology.yaml",
            "--log-dir",
            "/var/log/oneach",
            "--ssh-user",
            "admin",
            "--ssh-port",
            "2222",
            "--ssh-key",
            "/keys/id",
            "--known-hosts",
            "/keys/known_hosts",
            "--connect-timeout",
            "3",
            "date",
        ]
    )

    assert args.config_path == Path("/etc/oneach.yaml")
    assert args.config.topology == Path("/srv/topology.yaml")
    assert args.config.log_dir == Path("/var/log/oneach")
    transport = args.config.transport
    assert transport.user == "admin"
    assert transport.port == 2222
    assert transport.ssh_key == Path("/keys/id")
    assert transport.known_hosts == Path("/keys/known_hosts")
    assert transport.connect_timeout == 3.0
    assert transport.complete
    assert args.config.complete


def test_unspecified_transport_settings_are_left_open() -> None:
    args = parse_command_line(["-a", "date"])

    assert args.config_path is None
    assert args.config.topology is None
    assert args.config.transport.user is None
    assert not args.config.complete


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        (["date"], "must explicitly request all zones"),
        (["-a", "-s", "webapi", "date"], "cannot specify"),
        (["-a"], "expected command"),
        (["-a", "-d", "/tmp", "date"], "--dir cannot be used without --put or --get"),
        (["-a", "-X", "date"], "--clobber can only be used with --get"),
        (["-a", "-g", "/f", "-d", "/d", "date"], "unexpected arguments"),
        (["-a", "-g", "/f"], "--dir is required"),
        (["-a", "-p", "/f", "-d", "/d", "-X"], "--clobber can only be used with --get"),
        (["-a", "-g", "/f", "-p", "/g", "-d", "/d"], "not allowed with argument"),
        (["-a", "-c", "0", "date"], "expected positive integer"),
        (["-a", "-T", "soon", "date"], "expected positive integer"),
        (["-a", "--dashboard", "-J", "date"], "--dashboard cannot be used"),
        (["-a", "--dashboard", "--dry-run", "date"], "--dashboard cannot be used"),
    ],
)
def test_usage_errors(argv, message, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse_command_line(argv)

    assert excinfo.value.code == 2
    assert message in capsys.readouterr().err
