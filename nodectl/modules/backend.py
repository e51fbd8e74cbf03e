"""Load-balancer backend reconciliation."""
import logging
import re
from typing import List, Optional

from ..errors import ReconciliationFailure
from ..models import Hop, CommandResult
from . import scripts
from .executor import RemoteExecutor
from .leases import LeaseManager

logger = logging.getLogger("nodectl.backend")

_IDENTITY = re.compile(r"^[A-Za-z0-9_.:-]+$")

_OUTCOMES = ('BACKEND_EXISTS', 'BACKEND_ADDED', 'BACKEND_REMOVED', 'BACKEND_ABSENT')
_FAILURES = ('BACKEND_SECTION_MISSING', 'VALIDATION_FAILED', 'RESTART_FAILED')


def _validate(value: str, label: str) -> str:
    if not value or not _IDENTITY.match(value):
        raise ValueError(f"Invalid backend {label}: {value!r}")
    return value


def _outcome(output: str) -> Optional[str]:
    for token in _FAILURES + _OUTCOMES:
        if token in output:
            return token
    return None


class BackendReconciler:
    """Adds or removes a node's server line in the load balancer config.

    Each change backs up the config, rewrites it, syntax-checks and restarts
    haproxy; the backup is restored when either check fails.
    """

    def __init__(self, executor: RemoteExecutor, leases: Optional[LeaseManager] = None, timeout: float = 120):
        self.executor = executor
        self.leases = leases
        self.timeout = timeout

    def add(self, lb_hops: List[Hop], name: str, address: str, port: int = scripts.API_SERVER_PORT,
            owner: str = 'backend') -> str:
        """Ensure exactly one ``server <name> <address>:<port>`` line exists.

        Returns:
            'BACKEND_ADDED' or 'BACKEND_EXISTS'

        Raises:
            ReconciliationFailure: If validation or restart failed (the config was restored)
            TransportError: If the load balancer is unreachable
        """
        _validate(name, 'name')
        _validate(address, 'address')
        script = scripts.backend_add_script(name, address, port)
        return self._apply(lb_hops, script, f"add {name} ({address}:{port})", owner)

    def remove(self, lb_hops: List[Hop], name: str, owner: str = 'backend') -> str:
        """Delete the server line for ``name``.

        Returns:
            'BACKEND_REMOVED' or 'BACKEND_ABSENT'
        """
        _validate(name, 'name')
        script = scripts.backend_remove_script(name)
        return self._apply(lb_hops, script, f"remove {name}", owner)

    def _apply(self, lb_hops: List[Hop], script: str, action: str, owner: str) -> str:
        if self.leases is None:
            return self._execute(lb_hops, script, action)
        with self.leases.acquire(LeaseManager.lb_key(lb_hops[-1].host), owner):
            return self._execute(lb_hops, script, action)

    def _execute(self, lb_hops: List[Hop], script: str, action: str) -> str:
        password = lb_hops[-1].password
        results: List[CommandResult] = self.executor.run(
            lb_hops, scripts.backend_script_commands(script, password), timeout=self.timeout
        )
        run = results[2]
        output = run.stdout + run.stderr
        outcome = _outcome(output)
        if run.exit_code != 0 or outcome is None or outcome in _FAILURES:
            logger.error("Backend %s on %s failed (%s): %s", action, lb_hops[-1].host, outcome, output.strip()[-500:])
            raise ReconciliationFailure(
                f"Load balancer backend {action} failed: {outcome or 'exit ' + str(run.exit_code)}",
                report={'action': action, 'outcome': outcome, 'exit_code': run.exit_code, 'output': output},
            )
        logger.info("Backend %s on %s: %s", action, lb_hops[-1].host, outcome)
        return outcome
