"""
Multi-strategy container teardown.

Compose ``down`` misses manually created or orphaned containers, so three
strategies always run and the verdict comes from a final listing:

a. compose down for whichever manifest is present
b. stop and remove every ``container_name`` declared in the manifest
c. stop and remove every container whose name contains the stack name,
   taken from a listing captured before anything was removed
"""
import logging
from typing import List, Optional, Sequence

from ..config import get_settings
from ..models import Hop, RemovalStrategyReport, CommandResult
from . import parsing, scripts
from .executor import RemoteExecutor

logger = logging.getLogger("nodectl.teardown")

STRATEGY_COMPOSE = 'compose_down'
STRATEGY_CONTAINER_NAME = 'container_name'
STRATEGY_PS_MATCH = 'ps_match'
UNKNOWN_STRATEGY = 'unknown (containers were removed)'


def workdir_for(stack: str) -> str:
    return f"/tmp/{stack}_down"


class TeardownReconciler:
    """Removes a stack's containers and reconciles the strategies into one verdict."""

    def __init__(self, executor: RemoteExecutor, timeout: Optional[float] = None):
        self.executor = executor
        self.timeout = timeout if timeout is not None else get_settings().ssh.build_timeout

    def _run(self, hops: Sequence[Hop], commands: List[str]) -> List[CommandResult]:
        return self.executor.run(hops, commands, timeout=self.timeout)

    def _listing(self, hops: Sequence[Hop]) -> List[str]:
        results = self._run(hops, [scripts.container_list_command(password=hops[-1].password)])
        return parsing.container_names(results[0].stdout)

    def _stop_remove(self, hops: Sequence[Hop], names: List[str], report: RemovalStrategyReport) -> bool:
        """Strategies (b) and (c). True when at least one command ran and none failed."""
        if not names:
            return False
        password = hops[-1].password
        commands = [cmd for name in names for cmd in scripts.stop_remove_commands(name, password)]
        clean = True
        for result in self._run(hops, commands):
            output = result.stdout + result.stderr
            if parsing.has_failure_sentinel(output):
                clean = False
                report.failed_commands.append(result.command)
            else:
                report.success_commands.append(result.command)
        return clean

    def teardown(self, hops: Sequence[Hop], stack: str, repo_url: Optional[str] = None,
                 workdir: Optional[str] = None) -> RemovalStrategyReport:
        """Remove every container belonging to ``stack``.

        Args:
            hops: Hop chain to the docker host
            stack: Stack (compose project) name; also the name fragment for strategy (c)
            repo_url: Git repository holding the manifest, cloned into the work dir
            workdir: Existing directory holding the manifest when no repo is given

        Returns:
            RemovalStrategyReport; ``success`` is False with ``remaining`` set when
            targeted containers survived

        Raises:
            ValueError: For an invalid stack name
            TransportError: If the host is unreachable
        """
        parsing.validate_stack_name(stack)
        cloned = repo_url is not None
        workdir = workdir or workdir_for(stack)
        password = hops[-1].password
        report = RemovalStrategyReport(stack=stack)

        before = self._listing(hops)
        setup = []
        if cloned:
            setup.append(scripts.clone_command(repo_url, workdir))
        setup.append(scripts.manifest_probe_command(workdir))
        probe = self._run(hops, setup)[-1]
        manifest = parsing.parse_manifest_probe(probe.stdout)

        if manifest is None:
            if cloned:
                self._run(hops, [scripts.remove_workdir_command(workdir)])
            report.success = True
            report.message = "no manifest found"
            logger.info("Teardown of %s on %s: no manifest found, nothing removed", stack, hops[-1].host)
            return report

        # (a) compose down
        down = self._run(hops, [scripts.compose_down_command(workdir, stack, manifest, password)])[0]
        down_output = down.stdout + down.stderr
        report.compose_down_success = (
            not parsing.has_error_text(down_output) and parsing.FILE_NOT_FOUND not in down_output
        )
        (report.success_commands if report.compose_down_success else report.failed_commands).append(down.command)

        # (b) names declared in the manifest
        manifest_text = self._run(hops, [scripts.read_manifest_command(workdir, manifest)])[0].stdout
        declared = parsing.extract_container_names(manifest_text)
        report.container_name_success = self._stop_remove(hops, declared, report)

        # (c) names matching the stack in the pre-removal listing
        matched = [name for name in before if stack in name]
        report.ps_match_success = self._stop_remove(hops, matched, report)

        after = set(self._listing(hops))
        if cloned:
            self._run(hops, [scripts.remove_workdir_command(workdir)])

        targets: List[str] = []
        for name in matched + declared:
            if name not in targets:
                targets.append(name)
        report.targets = targets
        report.remaining = [name for name in targets if name in after]

        if report.remaining:
            report.success = False
            report.removed_by = 'none'
            report.message = f"{len(report.remaining)} container(s) still present: {', '.join(report.remaining)}"
            logger.error("Teardown of %s on %s incomplete: %s", stack, hops[-1].host, report.message)
            return report

        report.success = True
        if report.compose_down_success:
            report.removed_by = STRATEGY_COMPOSE
        elif report.container_name_success:
            report.removed_by = STRATEGY_CONTAINER_NAME
        elif report.ps_match_success:
            report.removed_by = STRATEGY_PS_MATCH
        else:
            report.removed_by = UNKNOWN_STRATEGY
        report.message = f"removed {len(targets)} container(s) via {report.removed_by}"
        logger.info("Teardown of %s on %s: %s", stack, hops[-1].host, report.message)
        return report
