"""
Data models for node orchestration.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any


class NodeType(str, Enum):
    """Kinds of managed hosts."""
    LOAD_BALANCER = 'load_balancer'
    CONTROL_PLANE = 'control_plane'
    WORKER = 'worker'


class NodeState(str, Enum):
    """Lifecycle state of a node as observed by the orchestrator."""
    UNINSTALLED = 'uninstalled'
    INSTALLING = 'installing'
    INSTALLED_STOPPED = 'installed_stopped'
    RUNNING = 'running'


class NodeRole(str, Enum):
    """Cluster role of a control-plane or worker node."""
    PRIMARY_CONTROL_PLANE = 'primary_control_plane'
    SECONDARY_CONTROL_PLANE = 'secondary_control_plane'
    WORKER = 'worker'


@dataclass(frozen=True)
class Hop:
    """One SSH-reachable host in a tunnel path."""
    host: str
    username: str
    password: str = ''
    port: int = 22

    def __repr__(self) -> str:
        return f"Hop(host={self.host!r}, port={self.port}, username={self.username!r})"


@dataclass(frozen=True)
class CommandResult:
    """Result of a single remote command."""
    command: str
    stdout: str = ''
    stderr: str = ''
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class NodeRecord:
    """Persisted identity and role of a managed host.

    ``version`` is owned by the store and bumped on every successful save.
    """
    id: str
    infra_id: str
    name: str
    type: NodeType
    hops: List[Hop] = field(default_factory=list)
    join_command: str = ''
    certificate_key: str = ''
    ha: bool = False
    last_checked: Optional[str] = None
    version: int = 0

    @property
    def target(self) -> Hop:
        """The final hop, where commands run."""
        if not self.hops:
            raise ValueError(f"Node {self.id} has no hops configured")
        return self.hops[-1]

    @property
    def address(self) -> str:
        return self.target.host

    @property
    def is_primary(self) -> bool:
        return self.type == NodeType.CONTROL_PLANE and bool(self.join_command)

    def copy(self, **changes) -> 'NodeRecord':
        changes.setdefault('hops', list(self.hops))
        return replace(self, **changes)


@dataclass
class ServerStatus:
    """Installed/running status derived from a probe."""
    installed: bool = False
    running: bool = False
    flags: Dict[str, bool] = field(default_factory=dict)
    last_checked: str = field(default_factory=lambda: datetime.now().strftime('%Y-%m-%d %H:%M:%S'))
    reachable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'installed': self.installed,
            'running': self.running,
            'flags': dict(self.flags),
            'last_checked': self.last_checked,
            'reachable': self.reachable,
        }


@dataclass
class InstallationOutcome:
    """What the completion watcher learned about a background install."""
    succeeded: bool
    evidence: str = ''
    join_command: str = ''
    certificate_key: str = ''


@dataclass
class RemovalStrategyReport:
    """Reconciled result of a multi-strategy teardown."""
    stack: str
    success: bool = False
    message: str = ''
    compose_down_success: bool = False
    container_name_success: bool = False
    ps_match_success: bool = False
    removed_by: str = 'none'
    targets: List[str] = field(default_factory=list)
    remaining: List[str] = field(default_factory=list)
    success_commands: List[str] = field(default_factory=list)
    failed_commands: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stack': self.stack,
            'success': self.success,
            'message': self.message,
            'compose_down_success': self.compose_down_success,
            'container_name_success': self.container_name_success,
            'ps_match_success': self.ps_match_success,
            'removed_by': self.removed_by,
            'targets': list(self.targets),
            'remaining': list(self.remaining),
            'success_commands': list(self.success_commands),
            'failed_commands': list(self.failed_commands),
        }


@dataclass
class ProvisionResult:
    """Synchronous answer to an install/join request."""
    node_id: str
    state: NodeState
    outcome: str  # 'launched', 'installed', 'not_rerun'
    message: str = ''
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'state': self.state.value,
            'outcome': self.outcome,
            'message': self.message,
            'task_id': self.task_id,
        }


@dataclass
class ContainerInfo:
    """One row of a container listing."""
    id: str
    image: str
    status: str
    name: str
    ports: str = ''
    size: str = ''
    created: str = ''
