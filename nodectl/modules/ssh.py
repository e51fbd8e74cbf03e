"""
SSH transport over a chain of hops using paramiko.
"""
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import paramiko
from paramiko.ssh_exception import (
    AuthenticationException,
    NoValidConnectionsError,
    SSHException,
)

from ..errors import TransportError
from ..models import Hop, CommandResult
from .parsing import classify_transport_failure

logger = logging.getLogger("nodectl.ssh")


@dataclass
class SSHSession:
    """An open hop chain. The last client is the execution target."""
    hops: List[Hop]
    clients: List[paramiko.SSHClient] = field(default_factory=list)

    @property
    def target(self) -> Hop:
        return self.hops[-1]


def _error_kind(exc: BaseException) -> str:
    if isinstance(exc, AuthenticationException):
        return 'authentication'
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return 'timeout'
    if isinstance(exc, (NoValidConnectionsError, ConnectionRefusedError, socket.gaierror)):
        return 'connection'
    return classify_transport_failure(str(exc))


class SSHTransport:
    """Remote shell transport: ``open(hops)``, ``run(session, command, timeout)``, ``close(session)``."""

    def __init__(self, connect_timeout: int = 10):
        self.connect_timeout = connect_timeout

    def _connect(self, hop: Hop, sock=None) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            hostname=hop.host,
            port=hop.port,
            username=hop.username,
            password=hop.password or None,
            sock=sock,
            timeout=self.connect_timeout,
            banner_timeout=30,
            auth_timeout=self.connect_timeout,
            allow_agent=False,
            look_for_keys=not hop.password,
        )
        return client

    def open(self, hops: Sequence[Hop]) -> SSHSession:
        """Connect to the first hop and tunnel through each following hop.

        Raises:
            TransportError: If any hop cannot be reached or authenticated
        """
        session = SSHSession(hops=list(hops))
        current: Optional[Hop] = None
        try:
            for hop in session.hops:
                current = hop
                sock = None
                if session.clients:
                    transport = session.clients[-1].get_transport()
                    if transport is None or not transport.is_active():
                        raise SSHException(f"tunnel to {hop.host} failed: previous hop transport is closed")
                    sock = transport.open_channel(
                        'direct-tcpip', (hop.host, hop.port), ('127.0.0.1', 0),
                        timeout=self.connect_timeout,
                    )
                logger.debug("Connecting to %s@%s:%s (hop %d/%d)",
                             hop.username, hop.host, hop.port, len(session.clients) + 1, len(session.hops))
                session.clients.append(self._connect(hop, sock=sock))
        except (SSHException, OSError) as e:
            self.close(session)
            host = current.host if current else None
            raise TransportError(_error_kind(e), str(e) or type(e).__name__, host=host) from e
        return session

    def run(self, session: SSHSession, command: str, timeout: float) -> CommandResult:
        """Run one command on the final hop in its own channel.

        A non-zero exit status is returned, not raised.

        Raises:
            TransportError: On timeout or a broken channel
        """
        client = session.clients[-1]
        host = session.target.host
        try:
            _, stdout, stderr = client.exec_command(command, timeout=timeout)
            channel = stdout.channel
            deadline = time.monotonic() + timeout
            out_chunks, err_chunks = [], []
            while True:
                while channel.recv_ready():
                    out_chunks.append(channel.recv(32768))
                while channel.recv_stderr_ready():
                    err_chunks.append(channel.recv_stderr(32768))
                if channel.exit_status_ready() and not channel.recv_ready() and not channel.recv_stderr_ready():
                    break
                if time.monotonic() > deadline:
                    channel.close()
                    raise socket.timeout(f"command timed out after {timeout}s")
                time.sleep(0.05)
            exit_code = channel.recv_exit_status()
        except (SSHException, OSError) as e:
            raise TransportError(_error_kind(e), str(e) or type(e).__name__, host=host) from e

        return CommandResult(
            command=command,
            stdout=b''.join(out_chunks).decode('utf-8', errors='replace'),
            stderr=b''.join(err_chunks).decode('utf-8', errors='replace'),
            exit_code=exit_code,
        )

    def close(self, session: SSHSession) -> None:
        """Close every client, innermost first."""
        for client in reversed(session.clients):
            try:
                client.close()
            except (SSHException, OSError) as e:
                logger.debug("Error closing SSH client: %s", e)
        session.clients.clear()


_default_transport: Optional[SSHTransport] = None
_transport_lock = threading.Lock()


def get_transport(connect_timeout: int = 10) -> SSHTransport:
    """Shared transport instance."""
    global _default_transport
    with _transport_lock:
        if _default_transport is None:
            _default_transport = SSHTransport(connect_timeout=connect_timeout)
        return _default_transport
