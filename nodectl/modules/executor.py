"""Remote batch execution across a hop chain."""
import logging
import time
from typing import List, Optional, Sequence

from ..config import get_settings
from ..errors import CommandFailure, TransportError
from ..logging import redact_command
from ..models import Hop, CommandResult
from .ssh import get_transport

logger = logging.getLogger("nodectl.executor")


class RemoteExecutor:
    """Runs ordered command batches against the last hop of a chain.

    The executor keeps no state between calls. Each batch opens the chain once,
    runs the commands in order and closes it again.
    """

    def __init__(self, transport=None):
        """
        Args:
            transport: Object with ``open``, ``run`` and ``close``; defaults to the paramiko transport
        """
        self.transport = transport or get_transport(get_settings().ssh.connect_timeout)

    def run(self, hops: Sequence[Hop], commands: Sequence[str], timeout: Optional[float] = None,
            check: bool = False) -> List[CommandResult]:
        """Execute ``commands`` sequentially on the final hop.

        Args:
            hops: Ordered hop chain; the last hop is the target
            commands: Shell commands, executed in order
            timeout: Budget for the whole batch in seconds
            check: Stop at the first non-zero exit and raise CommandFailure

        Returns:
            One CommandResult per command, in input order. Without ``check``,
            non-zero exit codes are recorded, not raised.

        Raises:
            ValueError: If hops or commands are empty
            TransportError: If the chain fails or the budget runs out; remaining
                commands are not executed
            CommandFailure: With ``check``, for the first command that exited non-zero
        """
        if not hops:
            raise ValueError("At least one hop is required")
        if not commands:
            raise ValueError("At least one command is required")
        if timeout is None:
            timeout = get_settings().ssh.batch_timeout

        target = hops[-1]
        secrets = [hop.password for hop in hops]
        deadline = time.monotonic() + timeout
        results: List[CommandResult] = []

        session = self.transport.open(hops)
        try:
            for i, command in enumerate(commands, 1):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransportError(
                        'timeout',
                        f"batch budget of {timeout}s exhausted before command {i}/{len(commands)}",
                        host=target.host,
                    )
                logger.debug("[%s] $ %s", target.host, redact_command(command, secrets))
                result = self.transport.run(session, command, remaining)
                if result.exit_code != 0:
                    logger.debug("[%s] exit %d: %s", target.host, result.exit_code, result.stderr.strip()[:500])
                results.append(result)
                if check and result.exit_code != 0:
                    raise CommandFailure(result, f"[{target.host}] command {i}/{len(commands)} "
                                                 f"exited with status {result.exit_code}")
        except TransportError as e:
            logger.error("Batch on %s aborted after %d/%d commands: %s",
                         target.host, len(results), len(commands), e)
            raise
        finally:
            self.transport.close(session)

        return results
