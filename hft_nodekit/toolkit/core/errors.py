"""Error taxonomy for the control plane."""

from typing import Optional


class NodeKitError(Exception):
    """Base class for all errors surfaced to operators."""

    def __init__(self, message: str, node_id: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id
        self.stage = stage


class ConfigError(NodeKitError):
    """Missing or invalid configuration."""


class TransportError(NodeKitError):
    """Connection failure or timeout on a channel. Triggers fallback."""

    def __init__(self, message: str, node_id: Optional[str] = None, transport: Optional[str] = None):
        super().__init__(message, node_id=node_id)
        self.transport = transport


class RemoteExecutionError(NodeKitError):
    """The remote side answered definitively with a failure."""

    def __init__(self, message: str, node_id: Optional[str] = None, transport: Optional[str] = None,
                 output: str = ""):
        super().__init__(message, node_id=node_id)
        self.transport = transport
        self.output = output


class VerificationMismatch(NodeKitError):
    """Signal and liveness disagree after the settle delay."""


class VerificationCancelled(NodeKitError):
    """Verification was cancelled; remote mutations already issued are left in place."""


class RegistryConflict(NodeKitError):
    """A registry write would leave zero or two primaries, or lost a compare-and-swap."""


class NodeNotFound(NodeKitError):
    """No node with the given id is registered."""


class NodeBusy(NodeKitError):
    """Another command is already in flight for the node."""
