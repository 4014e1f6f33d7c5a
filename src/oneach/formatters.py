"""Result formatters.

Formatters consume the results of a run and write them to a stream, usually
stdout. The text formatter is for interactive use; the JSON formatter writes
one object per line for programmatic consumers.
"""

from __future__ import annotations

import json
import sys
from enum import Enum
from typing import AsyncIterable, Protocol, TextIO

from .results import ExecutionResult


class LineMode(Enum):
    """How much of each result's output the text formatter prints.

    ONE collapses each result into its last non-empty line, one row per
    result. MULTI prints each result's complete output under a header line.
    AUTO picks ONE unless some result has more than one non-empty line.
    """

    ONE = "one"
    MULTI = "multi"
    AUTO = "auto"


class ResultFormatter(Protocol):
    def write(self, result: ExecutionResult) -> None: ...

    def finish(self) -> None: ...


def _nonblank_lines(text: str) -> list[str]:
    return [line for line in text.split("\n") if line.strip()]


def _sort_key(result: ExecutionResult) -> tuple[str, str, str]:
    target = result.target
    return (target.service or "", target.zonename or "", target.hostname)


class TextFormatter:
    """Writes results as text for interactive use.

    When ``batched``, results are held until the run is finished, then sorted
    by service, zonename and hostname so that output is stable across runs.
    Otherwise each result is printed as it arrives.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        omit_header: bool = False,
        batched: bool = True,
        line_mode: LineMode = LineMode.AUTO,
    ):
        if line_mode is LineMode.AUTO and not batched:
            raise ValueError("automatic line mode requires batched output")

        self.stream = stream or sys.stdout
        self.omit_header = omit_header
        self.batched = batched
        self.line_mode = line_mode

        self._auto_mode = LineMode.ONE
        self._done_header = False
        self._results: list[ExecutionResult] = []

    def write(self, result: ExecutionResult) -> None:
        if not self.batched:
            self._print_result(result, self.line_mode)
            return

        if (
            self.line_mode is LineMode.AUTO
            and self._auto_mode is LineMode.ONE
            and len(_nonblank_lines(result.output_text())) > 1
        ):
            self._auto_mode = LineMode.MULTI
        self._results.append(result)

    def finish(self) -> None:
        if self.batched:
            mode = self._auto_mode if self.line_mode is LineMode.AUTO else self.line_mode
            for result in sorted(self._results, key=_sort_key):
                self._print_result(result, mode)
            self._results = []
        self.stream.flush()

    def _print_result(self, result: ExecutionResult, mode: LineMode) -> None:
        target = result.target

        if not self.omit_header and not self._done_header and mode is LineMode.ONE:
            self._done_header = True
            if target.zonename is not None:
                self.stream.write("%-16s %-8s %s\n" % ("SERVICE", "ZONE", "OUTPUT"))
            else:
                self.stream.write("%-22s%s\n" % ("HOSTNAME", "OUTPUT"))

        if target.zonename is not None:
            if mode is LineMode.MULTI:
                label = "=== Output from %s on %s (%s):\n" % (
                    target.zonename,
                    target.hostname,
                    target.service,
                )
            else:
                label = "%-16s %s " % (target.service, target.zonename[:8])
        else:
            if mode is LineMode.MULTI:
                label = "=== Output from %s (%s):\n" % (
                    target.compute_node_id,
                    target.hostname,
                )
            else:
                label = "%-22s" % target.hostname

        output = result.output_text()
        if mode is not LineMode.MULTI:
            lines = _nonblank_lines(output)
            output = (lines[-1] if lines else "") + "\n"

        trailer = "\n" if mode is LineMode.MULTI else ""
        self.stream.write(label + output + trailer)


class JsonFormatter:
    """Writes each result as a JSON object on its own line, as it arrives."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stdout

    def write(self, result: ExecutionResult) -> None:
        self.stream.write(json.dumps(result.to_summary()) + "\n")
        self.stream.flush()

    def finish(self) -> None:
        self.stream.flush()


async def format_results(
    results: AsyncIterable[ExecutionResult], formatter: ResultFormatter
) -> None:
    """Feed a result stream through a formatter.

    Output collected before a fatal error is still written.
    """
    try:
        async for result in results:
            formatter.write(result)
    finally:
        formatter.finish()
