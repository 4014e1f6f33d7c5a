"""Command-line parsing for oneach.

Arguments are parsed and validated into the structures the Dispatcher and the
formatters take. Anything wrong with the command line is reported as a usage
error before any work starts.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .config import Config, TransportConfig
from .dispatcher import DEFAULT_CONCURRENCY, DEFAULT_EXEC_TIMEOUT, DispatchOptions
from .errors import ConfigurationError
from .formatters import LineMode
from .operations import ExecutionRequest, PullFile, PushFile, RunCommand
from .scope import ScopeSpec, validate_scope

OUTPUT_TEXT = "text"
OUTPUT_JSONSTREAM = "jsonstream"

DESCRIPTION = """\
Execute a shell command on all zones or a subset of zones using filters based
on zonename, service name, or compute node, or transfer a file to or from
each of them.
"""

EPILOG = """\
Filters are combined: the selected zones must match every filter given. With
-G, the command runs in the global zone of each compute node hosting a
selected zone.
"""


@dataclass
class OneachArgs:
    """Everything needed to carry out and present one run."""

    scope: ScopeSpec
    request: ExecutionRequest
    options: DispatchOptions
    config: Config
    config_path: Path | None = None
    output_mode: str = OUTPUT_TEXT
    omit_header: bool = False
    batched: bool = True
    line_mode: LineMode = LineMode.AUTO
    dashboard: bool = False


def _positive_int(value: str) -> int:
    try:
        parsed = int(value, 10)
    except ValueError:
        parsed = 0
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"expected positive integer, but got: {value}")
    return parsed


def _comma_list(value: str) -> list[str]:
    """Split "A,B,C" so that "-z A,B" is the same as "-z A -z B"."""
    return [item for item in value.split(",") if item]


def _flatten(values: list[list[str]] | None) -> list[str] | None:
    if values is None:
        return None
    return [item for sublist in values for item in sublist]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oneach",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("command", nargs="?", help="bash script to execute")

    scope = parser.add_argument_group("scope")
    scope.add_argument(
        "-a", "--all-zones", action="store_true", help="select all zones"
    )
    scope.add_argument(
        "-S",
        "--compute-node",
        metavar="HOSTNAME|UUID",
        type=_comma_list,
        action="append",
        help="select zones on the specified compute nodes",
    )
    scope.add_argument(
        "-s",
        "--service",
        metavar="SERVICE",
        type=_comma_list,
        action="append",
        help="select zones for SERVICE",
    )
    scope.add_argument(
        "-z",
        "--zonename",
        metavar="ZONENAME",
        type=_comma_list,
        action="append",
        help="select specific zones",
    )
    scope.add_argument(
        "-G", "--global-zones", action="store_true", help="select global zones"
    )

    transfer = parser.add_argument_group("file transfer")
    direction = transfer.add_mutually_exclusive_group()
    direction.add_argument("-g", "--get", metavar="FILE", help="transfer local to remote")
    direction.add_argument("-p", "--put", metavar="FILE", help="transfer remote to local")
    transfer.add_argument("-d", "--dir", metavar="DIR", help="varies with -g or -p")
    transfer.add_argument(
        "-X", "--clobber", action="store_true", help="clobber existing files with -g"
    )
    transfer.add_argument(
        "--bind-ip", metavar="IP", help="local address for file transfers"
    )

    execution = parser.add_argument_group("execution")
    execution.add_argument(
        "-c",
        "--concurrency",
        type=_positive_int,
        default=DEFAULT_CONCURRENCY,
        help="max concurrency (default: %(default)s)",
    )
    execution.add_argument(
        "-T",
        "--exectimeout",
        metavar="SECONDS",
        type=_positive_int,
        default=int(DEFAULT_EXEC_TIMEOUT),
        help="execution timeout (default: %(default)s)",
    )
    execution.add_argument("--dry-run", action="store_true", help="dry run mode")

    output = parser.add_argument_group("output")
    output.add_argument(
        "-I", "--immediate", action="store_true", help="print results as they arrive"
    )
    output.add_argument(
        "-J", "--jsonstream", action="store_true", help="json-streaming output"
    )
    output.add_argument(
        "-N", "--oneline", action="store_true", help="one line of output per result"
    )
    output.add_argument(
        "-H", "--omit-header", action="store_true", help="omit the header row"
    )
    output.add_argument(
        "--dashboard", action="store_true", help="show results in a live dashboard"
    )

    transport = parser.add_argument_group("transport")
    transport.add_argument("--config-file", type=Path, help="configuration file")
    transport.add_argument("--topology", type=Path, help="topology file")
    transport.add_argument("--log-dir", type=Path, help="directory for run logs")
    transport.add_argument("--ssh-user", metavar="USER")
    transport.add_argument("--ssh-port", metavar="PORT", type=_positive_int)
    transport.add_argument("--ssh-key", metavar="PATH", type=Path)
    transport.add_argument("--known-hosts", metavar="PATH", type=Path)
    transport.add_argument("--connect-timeout", metavar="SECONDS", type=_positive_int)

    return parser


def _build_request(args: argparse.Namespace) -> ExecutionRequest:
    if args.get is None and args.put is None:
        if args.command is None:
            raise ConfigurationError("expected command")
        if args.dir is not None:
            raise ConfigurationError("--dir cannot be used without --put or --get")
        if args.clobber:
            raise ConfigurationError("--clobber can only be used with --get")
        return RunCommand(script=args.command)

    if args.command is not None:
        raise ConfigurationError("unexpected arguments")
    if args.dir is None:
        raise ConfigurationError("--dir is required with --put and --get")

    if args.get is not None:
        return PushFile(local_path=args.get, remote_dir=args.dir, clobber=args.clobber)

    if args.clobber:
        raise ConfigurationError("--clobber can only be used with --get")
    return PullFile(remote_file=args.put, local_dir=args.dir)


def _from_namespace(args: argparse.Namespace) -> OneachArgs:
    scope = ScopeSpec.build(
        all_targets=args.all_zones,
        zonenames=_flatten(args.zonename),
        services=_flatten(args.service),
        compute_nodes=_flatten(args.compute_node),
        use_host_context=args.global_zones,
    )
    validate_scope(scope)

    request = _build_request(args)

    # --oneline overrides the implied line mode of --immediate, regardless of
    # the order in which they were given.
    batched = not args.immediate
    line_mode = LineMode.MULTI if args.immediate else LineMode.AUTO
    if args.oneline:
        line_mode = LineMode.ONE

    output_mode = OUTPUT_JSONSTREAM if args.jsonstream else OUTPUT_TEXT
    if args.dashboard and (args.jsonstream or args.dry_run):
        raise ConfigurationError(
            "--dashboard cannot be used with --jsonstream or --dry-run"
        )

    config = Config(
        topology=args.topology.expanduser() if args.topology else None,
        transport=TransportConfig(
            user=args.ssh_user,
            port=args.ssh_port,
            ssh_key=args.ssh_key.expanduser() if args.ssh_key else None,
            known_hosts=args.known_hosts.expanduser() if args.known_hosts else None,
            connect_timeout=(
                float(args.connect_timeout) if args.connect_timeout else None
            ),
        ),
        log_dir=args.log_dir.expanduser() if args.log_dir else None,
    )

    return OneachArgs(
        scope=scope,
        request=request,
        options=DispatchOptions(
            concurrency=args.concurrency,
            exec_timeout=float(args.exectimeout),
            dry_run=args.dry_run,
            bind_ip=args.bind_ip,
        ),
        config=config,
        config_path=args.config_file,
        output_mode=output_mode,
        omit_header=args.omit_header,
        batched=batched,
        line_mode=line_mode,
        dashboard=args.dashboard,
    )


def parse_command_line(argv: Sequence[str] | None = None) -> OneachArgs:
    """Parse ``argv``, exiting with a usage message if it's invalid."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return _from_namespace(args)
    except ConfigurationError as e:
        parser.error(str(e))
