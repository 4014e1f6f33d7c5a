"""The operation carried out on every target of a run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union


@dataclass(frozen=True)
class RunCommand:
    """Run a bash script on each target."""

    operation: ClassVar[str] = "exec"

    script: str

    def describe(self) -> str:
        return self.script


@dataclass(frozen=True)
class PushFile:
    """Copy a local file into a directory on each target."""

    operation: ClassVar[str] = "push"

    local_path: str
    remote_dir: str
    clobber: bool = False

    def describe(self) -> str:
        return "file transfer"


@dataclass(frozen=True)
class PullFile:
    """Copy a file from each target into a local directory."""

    operation: ClassVar[str] = "pull"

    remote_file: str
    local_dir: str

    def describe(self) -> str:
        return "file transfer"


ExecutionRequest = Union[RunCommand, PushFile, PullFile]


def is_transfer(request: ExecutionRequest) -> bool:
    return isinstance(request, (PushFile, PullFile))
