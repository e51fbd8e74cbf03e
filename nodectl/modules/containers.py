"""Container runtime install and listing."""
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..config import get_settings
from ..errors import ReconciliationFailure
from ..models import ContainerInfo, Hop
from . import parsing, scripts
from .executor import RemoteExecutor

logger = logging.getLogger("nodectl.containers")


def probe_runtime(executor: RemoteExecutor, hops: Sequence[Hop]):
    """(docker version line or None, existing container count)."""
    results = executor.run(hops, scripts.runtime_probe_commands())
    return parsing.parse_runtime_probe(results[0].stdout, results[1].stdout)


def install_runtime(executor: RemoteExecutor, hops: Sequence[Hop]) -> Dict[str, Any]:
    """Install docker unless it is already there with workloads on it.

    Returns:
        dict with ``outcome`` ('not_rerun' or 'installed'), ``version`` and ``containers``

    Raises:
        ReconciliationFailure: If docker is still missing after the install batch
    """
    version, count = probe_runtime(executor, hops)
    if version and count > 0:
        logger.info("Docker already on %s (%s) with %d container(s); not reinstalling",
                    hops[-1].host, version, count)
        return {
            'outcome': 'not_rerun',
            'version': version,
            'containers': count,
            'message': f"Docker is already installed ({version}) with {count} container(s)",
        }

    results = executor.run(hops, scripts.runtime_install_commands(hops[-1].password),
                           timeout=get_settings().ssh.build_timeout)
    installed = parsing.parse_runtime_probe(results[-1].stdout, '')[0]
    if not installed:
        failed = [r.command for r in results if r.exit_code != 0]
        raise ReconciliationFailure(
            f"Docker install on {hops[-1].host} did not produce a working docker binary",
            report={'failed_commands': failed},
        )
    logger.info("Docker installed on %s: %s", hops[-1].host, installed)
    return {'outcome': 'installed', 'version': installed, 'containers': count,
            'message': f"Docker installed ({installed})"}


def list_containers(executor: RemoteExecutor, hops: Sequence[Hop], project: Optional[str] = None,
                    use_sudo: bool = False) -> List[ContainerInfo]:
    """All containers on the host, or only those of a compose project."""
    password = hops[-1].password if use_sudo else None
    results = executor.run(hops, [scripts.container_list_command(project, password)])
    return parsing.parse_container_listing(results[0].stdout)
