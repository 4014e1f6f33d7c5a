"""Per-target outcomes and run bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


@dataclass(frozen=True)
class Target:
    """One execution unit: a zone, or a compute node's global zone."""

    compute_node_id: str
    hostname: str
    zonename: str | None = None
    service: str | None = None

    @property
    def host_context(self) -> bool:
        return self.zonename is None

    @property
    def label(self) -> str:
        """Short name used for log files and status output."""
        if self.zonename is None:
            return self.hostname
        return self.zonename


class FailureKind(Enum):
    """Why an operation did not produce a process result."""

    TIMEOUT = "TimeoutError"
    TRANSPORT = "TransportError"
    VALIDATION = "ValidationError"


@dataclass(frozen=True)
class Completed:
    """The process ran to completion, possibly exiting non-zero."""

    exit_status: int
    stdout: bytes = b""
    stderr: bytes = b""


@dataclass(frozen=True)
class Failed:
    """The operation could not be carried out or its status is unknown."""

    kind: FailureKind
    message: str


Outcome = Union[Completed, Failed]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ExecutionResult:
    """The single outcome reported for one target."""

    target: Target
    outcome: Outcome

    @property
    def failed(self) -> bool:
        return isinstance(self.outcome, Failed)

    def output_text(self) -> str:
        """Text shown for this result.

        Errors render as ``ERROR: <message>``. Successful commands show stdout
        only; commands that exited non-zero show stdout followed by stderr.
        """
        if isinstance(self.outcome, Failed):
            return f"ERROR: {self.outcome.message}\n"
        output = _decode(self.outcome.stdout)
        if self.outcome.exit_status != 0:
            output += _decode(self.outcome.stderr)
        return output

    def to_summary(self) -> dict[str, Any]:
        """Serializable form, one object per target."""
        summary: dict[str, Any] = {
            "uuid": self.target.compute_node_id,
            "hostname": self.target.hostname,
        }
        if self.target.zonename is not None:
            summary["zonename"] = self.target.zonename
            summary["service"] = self.target.service

        if isinstance(self.outcome, Failed):
            summary["error"] = {
                "name": self.outcome.kind.value,
                "message": self.outcome.message,
            }
        else:
            summary["result"] = {
                "exit_status": self.outcome.exit_status,
                "stdout": _decode(self.outcome.stdout),
                "stderr": _decode(self.outcome.stderr),
            }
        return summary


@dataclass
class RunCounters:
    """Counters for operations dispatched during one run.

    ``transport_errors`` counts failures to carry out an operation (timeouts,
    transport failures, rejected paths), not commands that exited non-zero.
    """

    started: int = 0
    completed: int = 0
    transport_errors: int = 0

    def start(self) -> None:
        self.started += 1

    def finish(self, result: ExecutionResult) -> None:
        self.completed += 1
        if result.failed:
            self.transport_errors += 1

    def check(self) -> None:
        if self.started != self.completed:
            raise AssertionError(
                f"operations started ({self.started}) != "
                f"operations completed ({self.completed})"
            )
