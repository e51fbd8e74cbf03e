"""Node status probing with bounded retries."""
import logging
import time
from typing import Optional, Sequence

from ..config import get_settings
from ..errors import TransportError
from ..models import Hop, NodeType, ServerStatus
from . import parsing
from .executor import RemoteExecutor
from .scripts import probe_command

logger = logging.getLogger("nodectl.poller")


def status_from_flags(node_type: NodeType, flags: dict) -> ServerStatus:
    """Derive installed/running from probe flags for a node type."""
    installed = parsing.flag(flags, 'INSTALLED')
    if 'RUNNING' in flags:
        running = parsing.flag(flags, 'RUNNING')
    elif node_type == NodeType.CONTROL_PLANE:
        running = (parsing.flag(flags, 'KUBELET_RUNNING')
                   and parsing.flag(flags, 'IS_MASTER')
                   and parsing.flag(flags, 'NODE_REGISTERED'))
    elif node_type == NodeType.WORKER:
        running = (parsing.flag(flags, 'KUBELET_RUNNING')
                   and parsing.flag(flags, 'NODE_REGISTERED')
                   and not parsing.flag(flags, 'IS_MASTER'))
    else:
        running = False
    return ServerStatus(installed=installed, running=running, flags=dict(flags))


class StatusPoller:
    """Runs a sentinel-bracketed probe until it answers or the attempts run out.

    An unreachable node reads as not installed / not running rather than raising.
    """

    def __init__(self, executor: RemoteExecutor, attempts: Optional[int] = None,
                 timeout: Optional[float] = None, retry_delay: Optional[float] = None,
                 delayed_attempts: Optional[int] = None):
        settings = get_settings().probe
        self.executor = executor
        self.attempts = attempts if attempts is not None else settings.attempts
        self.timeout = timeout if timeout is not None else settings.timeout
        self.retry_delay = retry_delay if retry_delay is not None else settings.retry_delay
        self.delayed_attempts = delayed_attempts if delayed_attempts is not None else settings.delayed_attempts

    def probe(self, hops: Sequence[Hop], command: str) -> Optional[dict]:
        """Flags from the first complete response, or None after all attempts fail."""
        host = hops[-1].host if hops else '?'
        for attempt in range(self.attempts):
            try:
                results = self.executor.run(hops, [command], timeout=self.timeout)
                flags = parsing.parse_probe_output(results[0].stdout)
                if flags is not None:
                    logger.debug("Probe on %s answered on attempt %d: %s", host, attempt + 1, flags)
                    return flags
                logger.debug("Probe on %s returned an incomplete response (attempt %d/%d)",
                             host, attempt + 1, self.attempts)
            except TransportError as e:
                logger.debug("Probe on %s failed (attempt %d/%d): %s", host, attempt + 1, self.attempts, e)

            if attempt < self.delayed_attempts and attempt < self.attempts - 1:
                time.sleep(self.retry_delay)

        logger.warning("Probe on %s failed after %d attempts; treating node as down", host, self.attempts)
        return None

    def check(self, hops: Sequence[Hop], node_type: NodeType) -> ServerStatus:
        """Installed/running status for a node of ``node_type``."""
        flags = self.probe(hops, probe_command(node_type))
        if flags is None:
            return ServerStatus(installed=False, running=False, reachable=False)
        return status_from_flags(node_type, flags)
