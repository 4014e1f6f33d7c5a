#!/usr/bin/env python3
"""Main entry point for oneach."""

import asyncio
import logging
import os
import sys

from .cli import OUTPUT_JSONSTREAM, OneachArgs, parse_command_line
from .dispatcher import Dispatcher
from .errors import OneachError
from .formatters import JsonFormatter, ResultFormatter, TextFormatter, format_results

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure logging from $LOG_LEVEL.

    Log messages are hidden by default: operational errors are reported on
    stderr anyway, and the operator's terminal should not be cluttered.
    """
    level_name = os.environ.get("LOG_LEVEL", "CRITICAL").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.CRITICAL
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    """Main entry point."""
    setup_logging()
    args = parse_command_line()

    dispatcher = Dispatcher(
        args.scope,
        args.request,
        options=args.options,
        config=args.config,
        config_path=args.config_path,
    )

    if args.dashboard:
        return _run_dashboard(dispatcher)

    return _run_headless(dispatcher, args)


def _make_formatter(args: OneachArgs) -> ResultFormatter:
    if args.output_mode == OUTPUT_JSONSTREAM:
        return JsonFormatter(sys.stdout)
    return TextFormatter(
        sys.stdout,
        omit_header=args.omit_header,
        batched=args.batched,
        line_mode=args.line_mode,
    )


def _run_headless(dispatcher: Dispatcher, args: OneachArgs) -> int:
    """Run the dispatcher, printing results to stdout."""
    formatter = _make_formatter(args)
    try:
        asyncio.run(format_results(dispatcher.stream(), formatter))
    except OneachError as e:
        print(f"oneach: {e}", file=sys.stderr)
        return 1
    except BrokenPipeError:
        # stdout went away (e.g. piped into "head")
        return 1

    if dispatcher.transport_errors > 0:
        return 1
    return 0


def _run_dashboard(dispatcher: Dispatcher) -> int:
    """Run the dispatcher under the live dashboard."""
    from .dashboard import Dashboard

    app = Dashboard(dispatcher)
    app.run()

    if app.error is not None:
        print(f"oneach: {app.error}", file=sys.stderr)
        return 1

    failed = [r.target.label for r in dispatcher.results if r.failed]
    if failed:
        print(f"\nFailed targets: {', '.join(failed)}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
