"""Error types for oneach."""

from __future__ import annotations


class OneachError(Exception):
    """Base class for operational errors reported to the operator."""


class ConfigurationError(OneachError):
    """The requested run cannot be carried out as specified."""


class PathValidationError(ConfigurationError):
    """A transfer path does not land where the target requires."""


class TopologyError(OneachError):
    """The deployment topology could not be loaded or queried."""


class TransportConnectError(OneachError):
    """The remote execution transport could not be set up."""


class TransportError(OneachError):
    """A single remote operation failed in the transport."""


class TransferError(TransportError):
    """A single file transfer could not be carried out."""
