from nodectl.errors import TransportError
from nodectl.models import NodeType
from nodectl.modules.poller import StatusPoller, status_from_flags


def test_single_hop_probe_scenario(executor, transport, hop, sleeps):
    transport.on("===START===", stdout="===START===INSTALLED=true\nRUNNING=false===END===")
    status = StatusPoller(executor).check([hop], NodeType.LOAD_BALANCER)
    assert status.installed is True
    assert status.running is False
    assert status.reachable is True
    assert sleeps == []


def test_retries_until_both_sentinels(executor, transport, hop, sleeps):
    transport.on("===START===", responses=[
        "", "===START===\nINSTALLED=true", "===START===\nINSTALLED=true\nRUNNING=true\n===END===",
    ])
    status = StatusPoller(executor).check([hop], NodeType.LOAD_BALANCER)
    assert status.installed and status.running
    assert len(transport.commands) == 3
    assert sleeps == [1.0, 1.0]


def test_all_attempts_failing_reads_as_down(executor, transport, hop, sleeps):
    transport.on("===START===", raises=TransportError('connection', "Connection refused"))
    status = StatusPoller(executor).check([hop], NodeType.CONTROL_PLANE)
    assert status.installed is False
    assert status.running is False
    assert status.reachable is False
    assert len(transport.commands) == 10
    # delay only after the first three attempts
    assert sleeps == [1.0, 1.0, 1.0]


def test_control_plane_running_needs_membership():
    flags = {'INSTALLED': True, 'KUBELET_RUNNING': True, 'IS_MASTER': True, 'NODE_REGISTERED': False}
    assert status_from_flags(NodeType.CONTROL_PLANE, flags).running is False
    flags['NODE_REGISTERED'] = True
    assert status_from_flags(NodeType.CONTROL_PLANE, flags).running is True


def test_worker_is_not_running_as_master():
    flags = {'INSTALLED': True, 'KUBELET_RUNNING': True, 'IS_MASTER': True, 'NODE_REGISTERED': True}
    assert status_from_flags(NodeType.WORKER, flags).running is False
    flags['IS_MASTER'] = False
    assert status_from_flags(NodeType.WORKER, flags).running is True


def test_probe_uses_short_timeout(transport, hop, sleeps):
    seen = []

    class Recording:
        def run(self, hops, commands, timeout=None):
            seen.append(timeout)
            raise TransportError('timeout', "timed out")

    StatusPoller(Recording(), attempts=2, timeout=20).check([hop], NodeType.WORKER)
    assert seen == [20, 20]
