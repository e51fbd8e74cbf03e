"""Completion watching and join secret extraction for background installs."""
import logging
from typing import Optional, Sequence

from ..config import get_settings
from ..errors import AsyncTimeout, ConcurrencyConflict, InstallationFailed, TransportError
from ..models import Hop, InstallationOutcome, NodeRecord
from . import parsing, scripts
from .executor import RemoteExecutor
from .persistence import NodeStore

logger = logging.getLogger("nodectl.watcher")

# Extra executor budget on top of the remote ceiling for connection setup.
_CEILING_MARGIN = 60


class CompletionWatcher:
    """Waits for a completion marker in a remote log, then reads the join secrets.

    The wait itself runs on the remote host as a single blocking command, so the
    watcher holds one connection instead of polling.
    """

    def __init__(self, executor: RemoteExecutor, ceiling: Optional[int] = None,
                 interval: Optional[int] = None):
        settings = get_settings().watch
        self.executor = executor
        self.ceiling = ceiling if ceiling is not None else settings.ceiling
        self.interval = interval if interval is not None else settings.interval

    def wait_for_marker(self, hops: Sequence[Hop], log: str, marker: str, pid: Optional[str] = None) -> str:
        """Block until ``marker`` appears in ``log``.

        Returns:
            'complete' or 'exited' (the script ended without writing the marker)

        Raises:
            AsyncTimeout: If the ceiling passed first
            TransportError: If the host became unreachable for another reason
        """
        host = hops[-1].host
        command = scripts.watch_command(log, marker, self.ceiling, self.interval, pid=pid)
        logger.info("Watching %s on %s for %r (ceiling %ss)", log, host, marker, self.ceiling)
        try:
            results = self.executor.run(hops, [command], timeout=self.ceiling + _CEILING_MARGIN)
        except TransportError as e:
            if e.kind == 'timeout':
                raise AsyncTimeout(f"No {marker!r} in {log} on {host} within {self.ceiling}s") from e
            raise

        state = parsing.parse_watch_output(results[0].stdout)
        if state == 'timeout':
            raise AsyncTimeout(f"No {marker!r} in {log} on {host} within {self.ceiling}s")
        if state is None:
            logger.warning("Unreadable watch output from %s: %r", host, results[0].stdout[-200:])
            return 'exited'
        return state

    def read_artifacts(self, hops: Sequence[Hop], log: str):
        """(log text, join command file text)."""
        results = self.executor.run(hops, scripts.read_artifacts_commands(log))
        return results[0].stdout, results[1].stdout

    def watch(self, hops: Sequence[Hop], log: str, marker: str, pid: Optional[str] = None,
              extract_secrets: bool = False) -> InstallationOutcome:
        """Wait for completion and build the outcome.

        Raises:
            AsyncTimeout: The marker never showed up
            InstallationFailed: The script exited without the marker
        """
        state = self.wait_for_marker(hops, log, marker, pid=pid)
        log_text, join_file = self.read_artifacts(hops, log)
        evidence = parsing.tail(log_text)

        if state != 'complete':
            outcome = InstallationOutcome(succeeded=False, evidence=evidence)
            raise InstallationFailed(f"{log} on {hops[-1].host} ended without {marker!r}", outcome=outcome)

        outcome = InstallationOutcome(succeeded=True, evidence=evidence)
        if extract_secrets:
            outcome.join_command = parsing.extract_join_command(log_text, join_file)
            outcome.certificate_key = parsing.extract_certificate_key(log_text)
            if not outcome.join_command:
                logger.warning("Install on %s completed but no join command could be extracted", hops[-1].host)
            if not outcome.certificate_key:
                logger.warning("Install on %s completed but no certificate key could be extracted", hops[-1].host)
        return outcome


def persist_outcome(store: NodeStore, node_id: str, outcome: InstallationOutcome,
                    expected_version: int, last_checked: Optional[str] = None) -> NodeRecord:
    """Write extracted secrets back with an optimistic save.

    ``expected_version`` is the record version seen when the background work was
    launched; any write since then is a conflict.

    Raises:
        ConcurrencyConflict: If the record changed while the install ran
        NodeNotFound: If the record was deleted while the install ran
    """
    record = store.get(node_id)
    if record.version != expected_version:
        logger.error("Outcome for node %s not saved: record changed concurrently", node_id)
        raise ConcurrencyConflict(node_id, expected_version, record.version)
    changes = {}
    if outcome.join_command:
        changes['join_command'] = outcome.join_command
    if outcome.certificate_key:
        changes['certificate_key'] = outcome.certificate_key
    if last_checked:
        changes['last_checked'] = last_checked
    return store.save(record.copy(**changes))
