"""Exception hierarchy for nodectl."""
from typing import Optional, Any


class NodectlError(Exception):
    """Base class for all orchestration errors."""
    pass


class TransportError(NodectlError):
    """The hop chain could not be established or a command timed out.

    Attributes:
        kind: One of 'timeout', 'connection', 'authentication', 'other'
        host: Host that failed, when known
    """

    KINDS = ('timeout', 'connection', 'authentication', 'other')

    def __init__(self, kind: str, message: str, host: Optional[str] = None):
        if kind not in self.KINDS:
            kind = 'other'
        self.kind = kind
        self.host = host
        prefix = f"[{kind}]"
        if host:
            prefix += f" {host}:"
        super().__init__(f"{prefix} {message}")


class CommandFailure(NodectlError):
    """A command inside an otherwise successful batch exited non-zero."""

    def __init__(self, result: Any, message: Optional[str] = None):
        self.result = result
        super().__init__(message or f"Command exited with status {result.exit_code}")


class PreconditionFailure(NodectlError):
    """Rejected before any destructive remote command was issued."""
    pass


class ReconciliationFailure(NodectlError):
    """Remote state did not converge; carries the attribution data."""

    def __init__(self, message: str, report: Any = None):
        self.report = report
        super().__init__(message)


class AsyncTimeout(NodectlError):
    """A completion marker never appeared within the watch ceiling."""
    pass


class ConcurrencyConflict(NodectlError):
    """A save was attempted against a stale record version."""

    def __init__(self, node_id: str, expected: int, actual: int):
        self.node_id = node_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Node {node_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )


class LeaseTimeout(NodectlError):
    """A lease could not be acquired within the wait bound."""

    def __init__(self, key: str, holder: Optional[str] = None):
        self.key = key
        self.holder = holder
        super().__init__(f"Timed out waiting for lease {key}" + (f" held by {holder}" if holder else ""))


class NodeNotFound(NodectlError):
    """No record exists for the requested node id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found")


class InstallationFailed(NodectlError):
    """A background script exited without writing its completion marker."""

    def __init__(self, message: str, outcome: Any = None):
        self.outcome = outcome
        super().__init__(message)
