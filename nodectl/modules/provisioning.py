"""
Node provisioning: install, join, verify and remove.

Long installs are launched detached on the remote host and supervised by a
background task; the request that triggered them returns as soon as the script
has started.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..config import get_settings
from ..errors import (
    AsyncTimeout, CommandFailure, ConcurrencyConflict, InstallationFailed, NodectlError,
    PreconditionFailure, ReconciliationFailure, TransportError,
)
from ..models import (
    InstallationOutcome, NodeRecord, NodeRole, NodeState, NodeType,
    ProvisionResult, ServerStatus,
)
from . import parsing, scripts
from .backend import BackendReconciler
from .executor import RemoteExecutor
from .leases import LeaseManager
from .persistence import NodeStore
from .poller import StatusPoller
from .tasks import TaskRecord, TaskRunner
from .watcher import CompletionWatcher, persist_outcome

logger = logging.getLogger("nodectl.provisioning")

INSTALL_TASK = "install-control-plane"


def _now() -> str:
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


def role_of(record: NodeRecord) -> Optional[NodeRole]:
    """Cluster role of a record; load balancers have none."""
    if record.type == NodeType.WORKER:
        return NodeRole.WORKER
    if record.type == NodeType.CONTROL_PLANE:
        return NodeRole.PRIMARY_CONTROL_PLANE if record.is_primary else NodeRole.SECONDARY_CONTROL_PLANE
    return None


def state_of(status: ServerStatus, task: Optional[TaskRecord] = None) -> NodeState:
    """Lifecycle state from a probe and the node's in-flight task."""
    if task is not None and not task.done:
        return NodeState.INSTALLING
    if status.running:
        return NodeState.RUNNING
    if status.installed:
        return NodeState.INSTALLED_STOPPED
    return NodeState.UNINSTALLED


class NodeProvisioner:
    """Drives nodes through Uninstalled -> Installing -> InstalledStopped -> Running."""

    def __init__(self, store: NodeStore, executor: Optional[RemoteExecutor] = None,
                 poller: Optional[StatusPoller] = None, leases: Optional[LeaseManager] = None,
                 tasks: Optional[TaskRunner] = None, backend: Optional[BackendReconciler] = None,
                 watcher: Optional[CompletionWatcher] = None):
        self.store = store
        self.executor = executor or RemoteExecutor()
        self.poller = poller or StatusPoller(self.executor)
        self.leases = leases or LeaseManager()
        self.tasks = tasks or TaskRunner()
        self.backend = backend or BackendReconciler(self.executor, self.leases)
        self.watcher = watcher or CompletionWatcher(self.executor)
        self.build_timeout = get_settings().ssh.build_timeout

    # --- registration and status ------------------------------------------------

    def register(self, record: NodeRecord) -> NodeRecord:
        """Store a new node record.

        Raises:
            PreconditionFailure: If the id is taken or the record has no hops
        """
        if not record.hops:
            raise PreconditionFailure(f"Node {record.id} needs at least one hop")
        if record.type == NodeType.LOAD_BALANCER and self.store.find_load_balancer(record.infra_id):
            raise PreconditionFailure(f"Infra {record.infra_id} already has a load balancer")
        try:
            return self.store.save(record.copy(version=0))
        except ConcurrencyConflict:
            raise PreconditionFailure(f"Node {record.id} is already registered")

    def verify(self, node_id: str) -> Tuple[ServerStatus, NodeState]:
        """Probe the node and record when it was last checked.

        The record is left alone while a background task owns it.
        """
        record = self.store.get(node_id)
        status = self.poller.check(record.hops, record.type)
        task = self.tasks.active_for(node_id)
        if task is None:
            changes: Dict[str, Any] = {'last_checked': status.last_checked}
            if record.type == NodeType.LOAD_BALANCER:
                changes['ha'] = status.running
            self.store.save(record.copy(**changes))
        state = state_of(status, task)
        logger.info("Node %s (%s): installed=%s running=%s state=%s",
                    record.name, record.type.value, status.installed, status.running, state.value)
        return status, state

    # --- install / join -----------------------------------------------------

    def install(self, node_id: str) -> ProvisionResult:
        """Install the software a node's type calls for.

        Workers are installed by joining the cluster. The in-flight check, the
        pre-check probe and the launch all happen under the node lease.

        Raises:
            PreconditionFailure: Missing load balancer, second primary, or missing join secret
            TransportError: The node could not be reached to launch the install
            CommandFailure: The install script could not be written or started
            LeaseTimeout: Another request holds the node
        """
        record = self.store.get(node_id)
        if record.type == NodeType.WORKER:
            return self.join(node_id)

        owner = f"install:{record.id}"
        with self.leases.acquire(LeaseManager.node_key(record.id), owner):
            in_flight = self._in_flight(record)
            if in_flight:
                return in_flight
            record = self.store.get(node_id)
            if record.type == NodeType.LOAD_BALANCER:
                return self._install_load_balancer(record)
            return self._install_primary(record, owner)

    def join(self, node_id: str) -> ProvisionResult:
        """Join a control-plane peer or a worker to its infra's cluster.

        Raises:
            PreconditionFailure: If no primary with a join secret exists, or a
                control-plane peer has no load balancer to register through
        """
        record = self.store.get(node_id)
        if record.type == NodeType.LOAD_BALANCER:
            raise PreconditionFailure("Load balancers are installed, not joined")
        if record.is_primary:
            raise PreconditionFailure(f"Node {record.name} is the primary control-plane node")

        owner = f"join:{record.id}"
        with self.leases.acquire(LeaseManager.node_key(record.id), owner):
            in_flight = self._in_flight(record)
            if in_flight:
                return in_flight
            record = self.store.get(node_id)

            primary = self.store.find_primary(record.infra_id, exclude_id=record.id)
            if primary is None or not primary.join_command:
                raise PreconditionFailure(
                    f"No join command available in infra {record.infra_id}; install the primary control-plane node first"
                )
            is_control_plane = record.type == NodeType.CONTROL_PLANE
            lb = None
            if is_control_plane:
                if not primary.certificate_key:
                    raise PreconditionFailure(
                        f"Primary {primary.name} has no certificate key; control-plane peers cannot join"
                    )
                lb = self.store.find_load_balancer(record.infra_id)
                if lb is None:
                    raise PreconditionFailure(
                        f"Infra {record.infra_id} has no load balancer; control-plane peers register through it"
                    )

            already = self._already_running(record)
            if already:
                return already

            if is_control_plane:
                script = scripts.control_plane_join_script(record.name, primary.join_command, primary.certificate_key)
                marker = scripts.CONTROL_PLANE_JOIN_MARKER
                # the peer registers through the load balancer, so its backend must exist first
                self.backend.add(lb.hops, record.name, record.address, owner=owner)
            else:
                script = scripts.worker_join_script(record.name, parsing.with_node_name(primary.join_command, record.name))
                marker = scripts.WORKER_JOIN_MARKER
            try:
                self.executor.run(record.hops, scripts.launch_commands(
                    scripts.JOIN_SCRIPT, script, scripts.JOIN_LOG, scripts.JOIN_PID, record.target.password,
                ), check=True)
            except (TransportError, CommandFailure):
                self._drop_backend(lb, record, owner)
                raise
            handle = self.tasks.submit(
                f"join-{record.type.value}", self._complete_join, record, lb, marker,
                node_id=record.id,
            )

        logger.info("Join of %s (%s) launched as task %s", record.name, record.type.value, handle.id)
        return ProvisionResult(
            node_id=record.id, state=NodeState.INSTALLING, outcome='launched',
            message=f"Join started; log {scripts.JOIN_LOG}", task_id=handle.id,
        )

    def _in_flight(self, record: NodeRecord) -> Optional[ProvisionResult]:
        task = self.tasks.active_for(record.id)
        if task is None:
            return None
        return ProvisionResult(
            node_id=record.id, state=NodeState.INSTALLING, outcome='in_progress',
            message=f"Task {task.id} ({task.name}) is still {task.state.value}", task_id=task.id,
        )

    def _already_running(self, record: NodeRecord) -> Optional[ProvisionResult]:
        status = self.poller.check(record.hops, record.type)
        if status.installed and status.running:
            logger.info("Node %s is already installed and running; not re-running install", record.name)
            return ProvisionResult(
                node_id=record.id, state=NodeState.RUNNING, outcome='not_rerun',
                message="Already installed and running",
            )
        return None

    def _install_load_balancer(self, record: NodeRecord) -> ProvisionResult:
        already = self._already_running(record)
        if already:
            return already

        with self.leases.acquire(LeaseManager.lb_key(record.address), f"install:{record.id}"):
            results = self.executor.run(
                record.hops, scripts.lb_install_commands(record.target.password), timeout=self.build_timeout
            )
        failed = [r for r in results if r.exit_code != 0]
        if failed:
            logger.warning("Load balancer install on %s: %d command(s) failed", record.name, len(failed))

        status, state = self.verify(record.id)
        if not status.running:
            raise ReconciliationFailure(
                f"HAProxy on {record.name} is not running after install",
                report={'failed_commands': [r.command for r in failed], 'status': status.to_dict()},
            )
        return ProvisionResult(node_id=record.id, state=state, outcome='installed',
                               message="Load balancer installed")

    def _refuse_second_primary(self, record: NodeRecord) -> None:
        """A primary exists once its secrets are saved, or while its install task runs."""
        existing = self.store.find_primary(record.infra_id, exclude_id=record.id)
        if existing is not None:
            raise PreconditionFailure(
                f"Infra {record.infra_id} already has primary {existing.name}; join this node instead"
            )
        for peer in self.store.list_nodes(record.infra_id, NodeType.CONTROL_PLANE):
            if peer.id == record.id:
                continue
            task = self.tasks.active_for(peer.id)
            if task is not None and task.name == INSTALL_TASK:
                raise PreconditionFailure(
                    f"Infra {record.infra_id} is already installing primary {peer.name} (task {task.id}); "
                    f"join this node once it completes"
                )

    def _install_primary(self, record: NodeRecord, owner: str) -> ProvisionResult:
        lb = self.store.find_load_balancer(record.infra_id)
        with self.leases.acquire(LeaseManager.infra_key(record.infra_id), owner):
            self._refuse_second_primary(record)
            if lb is None:
                raise PreconditionFailure(f"Infra {record.infra_id} has no load balancer; install one first")

            already = self._already_running(record)
            if already:
                return already

            script = scripts.control_plane_install_script(record.name, lb.address)
            self.backend.add(lb.hops, record.name, record.address, owner=owner)
            try:
                self.executor.run(record.hops, scripts.launch_commands(
                    scripts.INSTALL_SCRIPT, script, scripts.INSTALL_LOG, scripts.INSTALL_PID, record.target.password,
                ), check=True)
            except (TransportError, CommandFailure):
                self._drop_backend(lb, record, owner)
                raise
            handle = self.tasks.submit(INSTALL_TASK, self._complete_install, record, lb, node_id=record.id)

        logger.info("Control-plane install on %s launched as task %s", record.name, handle.id)
        return ProvisionResult(
            node_id=record.id, state=NodeState.INSTALLING, outcome='launched',
            message=f"Install started; log {scripts.INSTALL_LOG}", task_id=handle.id,
        )

    # --- completion callbacks -----------------------------------------------

    def _complete_install(self, record: NodeRecord, lb: NodeRecord) -> InstallationOutcome:
        owner = f"install:{record.id}"
        try:
            outcome = self.watcher.watch(
                record.hops, scripts.INSTALL_LOG, scripts.INSTALL_MARKER,
                pid=scripts.INSTALL_PID, extract_secrets=True,
            )
        except (AsyncTimeout, InstallationFailed):
            self._drop_backend(lb, record, owner)
            raise
        persist_outcome(self.store, record.id, outcome, record.version, last_checked=_now())
        return outcome

    def _complete_join(self, record: NodeRecord, lb: Optional[NodeRecord], marker: str) -> InstallationOutcome:
        owner = f"join:{record.id}"
        try:
            outcome = self.watcher.watch(record.hops, scripts.JOIN_LOG, marker, pid=scripts.JOIN_PID)
        except (AsyncTimeout, InstallationFailed):
            self._drop_backend(lb, record, owner)
            raise
        if lb is not None:
            self.backend.add(lb.hops, record.name, record.address, owner=owner)
        persist_outcome(self.store, record.id, outcome, record.version, last_checked=_now())
        return outcome

    def _drop_backend(self, lb: Optional[NodeRecord], record: NodeRecord, owner: str) -> None:
        """Remove a backend added for a node whose install did not finish."""
        if lb is None:
            return
        try:
            self.backend.remove(lb.hops, record.name, owner=owner)
        except NodectlError as e:
            logger.error("Could not remove orphaned backend %s from %s: %s", record.name, lb.name, e)

    # --- removal ------------------------------------------------------------

    def remove(self, node_id: str) -> Dict[str, Any]:
        """Tear down a node and delete its record.

        The guards, the teardown and the delete all run under the node lease.

        Raises:
            PreconditionFailure: Removing a primary while other control-plane
                nodes exist, or a node with a task still running
            LeaseTimeout: Another request holds the node
        """
        record = self.store.get(node_id)
        owner = f"remove:{record.id}"
        report: Dict[str, Any] = {'node_id': record.id, 'name': record.name, 'type': record.type.value,
                                  'steps': [], 'warnings': []}
        with self.leases.acquire(LeaseManager.node_key(record.id), owner):
            record = self.store.get(node_id)
            if record.is_primary:
                peers = self.store.list_peers(record.infra_id, exclude_id=record.id, node_type=NodeType.CONTROL_PLANE)
                if peers > 0:
                    raise PreconditionFailure(
                        f"Cannot remove primary {record.name}: {peers} other control-plane node(s) still reference infra {record.infra_id}"
                    )
            task = self.tasks.active_for(record.id)
            if task is not None:
                raise PreconditionFailure(f"Node {record.name} has task {task.id} still {task.state.value}")

            if record.type == NodeType.LOAD_BALANCER:
                self.executor.run(record.hops, scripts.lb_uninstall_commands(record.target.password))
                report['steps'].append('haproxy_purged')
            else:
                if record.type == NodeType.CONTROL_PLANE:
                    lb = self.store.find_load_balancer(record.infra_id)
                    if lb is not None:
                        report['steps'].append(self.backend.remove(lb.hops, record.name, owner=owner).lower())
                primary = None if record.is_primary else self.store.find_primary(record.infra_id, exclude_id=record.id)
                if primary is not None:
                    self._detach_from_cluster(primary, record, report)
                self._cleanup_node(record, report)

            self.store.delete(record.id)
        report['steps'].append('record_deleted')
        logger.info("Node %s removed: %s", record.name, ', '.join(report['steps']))
        return report

    def _detach_from_cluster(self, primary: NodeRecord, record: NodeRecord, report: Dict[str, Any]) -> None:
        password = primary.target.password
        self.executor.run(primary.hops, scripts.drain_commands(record.name, password), timeout=self.build_timeout)
        report['steps'].append('drained')
        if record.type != NodeType.CONTROL_PLANE:
            return
        listing = self.executor.run(primary.hops, [scripts.etcd_member_list_command(password)])
        member_id = parsing.parse_etcd_member_id(listing[0].stdout, record.name)
        if member_id is None:
            report['warnings'].append(f"etcd member {record.name} not found")
            return
        removal = self.executor.run(primary.hops, [scripts.etcd_member_remove_command(member_id, password)])
        if removal[0].exit_code != 0:
            report['warnings'].append(f"etcd member remove {member_id} failed: {removal[0].stderr.strip()}")
        else:
            report['steps'].append('etcd_member_removed')

    def _cleanup_node(self, record: NodeRecord, report: Dict[str, Any]) -> None:
        try:
            self.executor.run(record.hops, scripts.node_cleanup_commands(record.target.password),
                              timeout=self.build_timeout)
            report['steps'].append('node_cleaned')
        except TransportError as e:
            # the host may already be gone
            logger.warning("Cleanup of %s skipped: %s", record.name, e)
            report['warnings'].append(f"cleanup skipped: {e}")

    def task_status(self, task_id: str) -> Optional[TaskRecord]:
        return self.tasks.get(task_id)

    def tasks_for(self, node_id: str) -> List[TaskRecord]:
        return self.tasks.list(node_id)
