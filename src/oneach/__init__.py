"""oneach: Run commands or transfer files on many zones or compute nodes."""

from .config import Config, TransportConfig, load_config
from .dispatcher import DispatchOptions, Dispatcher, DispatcherState
from .errors import (
    ConfigurationError,
    OneachError,
    PathValidationError,
    TopologyError,
    TransferError,
    TransportConnectError,
    TransportError,
)
from .formatters import JsonFormatter, LineMode, TextFormatter
from .operations import ExecutionRequest, PullFile, PushFile, RunCommand
from .results import Completed, ExecutionResult, Failed, FailureKind, RunCounters, Target
from .scope import ScopeSpec, resolve_scope

__all__ = [
    "Config",
    "TransportConfig",
    "load_config",
    "DispatchOptions",
    "Dispatcher",
    "DispatcherState",
    "ConfigurationError",
    "OneachError",
    "PathValidationError",
    "TopologyError",
    "TransferError",
    "TransportConnectError",
    "TransportError",
    "JsonFormatter",
    "LineMode",
    "TextFormatter",
    "ExecutionRequest",
    "PullFile",
    "PushFile",
    "RunCommand",
    "Completed",
    "ExecutionResult",
    "Failed",
    "FailureKind",
    "RunCounters",
    "Target",
    "ScopeSpec",
    "resolve_scope",
]
