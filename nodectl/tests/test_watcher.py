import pytest

from nodectl.errors import AsyncTimeout, ConcurrencyConflict, InstallationFailed, TransportError
from nodectl.models import InstallationOutcome, NodeType
from nodectl.modules import scripts
from nodectl.modules.persistence import InMemoryNodeStore
from nodectl.modules.watcher import CompletionWatcher, persist_outcome

from nodectl.tests.conftest import fixture_text, make_record

WATCH = "timeout 1800 bash -c"


def _artifacts(transport, log="kubeadm_init.log", join_file="k8s_join_command.txt"):
    transport.on(f"cat {scripts.INSTALL_LOG}", stdout=fixture_text(log))
    transport.on(f"cat {scripts.JOIN_COMMAND_FILE}", stdout=fixture_text(join_file) if join_file else '')


def test_complete_install_extracts_both_secrets(executor, transport, hop):
    transport.on(WATCH, stdout="WATCH_COMPLETE\n")
    _artifacts(transport)
    outcome = CompletionWatcher(executor).watch(
        [hop], scripts.INSTALL_LOG, scripts.INSTALL_MARKER, pid=scripts.INSTALL_PID, extract_secrets=True,
    )
    assert outcome.succeeded
    assert outcome.join_command.startswith("kubeadm join 192.168.0.10:6444 --token ")
    assert outcome.join_command.endswith("sha256:4f5e6d7c8b9a00112233445566778899aabbccddeeff00112233445566778899")
    assert outcome.certificate_key == "9f8e7d6c5b4a39281706f5e4d3c2b1a09f8e7d6c5b4a39281706f5e4d3c2b1a0"
    assert scripts.INSTALL_MARKER in transport.commands[0]
    assert f"/proc/$(cat {scripts.INSTALL_PID})" in transport.commands[0]


def test_join_watch_does_not_extract(executor, transport, hop):
    transport.on(WATCH, stdout="WATCH_COMPLETE\n")
    _artifacts(transport)
    outcome = CompletionWatcher(executor).watch([hop], scripts.INSTALL_LOG, scripts.WORKER_JOIN_MARKER)
    assert outcome.succeeded
    assert outcome.join_command == ''


def test_remote_ceiling_raises_async_timeout(executor, transport, hop):
    transport.on(WATCH, stdout="WATCH_TIMEOUT\n")
    with pytest.raises(AsyncTimeout):
        CompletionWatcher(executor).watch([hop], scripts.INSTALL_LOG, scripts.INSTALL_MARKER)
    assert len(transport.commands) == 1


def test_transport_timeout_is_async_timeout(executor, transport, hop):
    transport.on(WATCH, raises=TransportError('timeout', "read timed out"))
    with pytest.raises(AsyncTimeout):
        CompletionWatcher(executor).wait_for_marker([hop], scripts.INSTALL_LOG, scripts.INSTALL_MARKER)


def test_connection_loss_propagates(executor, transport, hop):
    transport.on(WATCH, raises=TransportError('connection', "Connection reset by peer"))
    with pytest.raises(TransportError):
        CompletionWatcher(executor).wait_for_marker([hop], scripts.INSTALL_LOG, scripts.INSTALL_MARKER)


def test_script_exit_without_marker_fails_with_evidence(executor, transport, hop):
    transport.on(WATCH, stdout="WATCH_EXITED\n")
    _artifacts(transport, log="kubeadm_truncated.log", join_file=None)
    with pytest.raises(InstallationFailed) as exc:
        CompletionWatcher(executor).watch([hop], scripts.INSTALL_LOG, scripts.INSTALL_MARKER,
                                          pid=scripts.INSTALL_PID)
    assert not exc.value.outcome.succeeded
    assert exc.value.outcome.evidence


def test_ceiling_and_interval_reach_the_command(executor, transport, hop):
    transport.on("timeout 90 bash -c", stdout="WATCH_COMPLETE")
    CompletionWatcher(executor, ceiling=90, interval=3).wait_for_marker([hop], "/tmp/x.log", "DONE")
    assert "sleep 3" in transport.commands[0]


def test_persist_outcome_writes_secrets():
    store = InMemoryNodeStore()
    record = store.save(make_record("cp-1", NodeType.CONTROL_PLANE, "192.168.0.11"))
    outcome = InstallationOutcome(succeeded=True, join_command="kubeadm join x --token t "
                                  "--discovery-token-ca-cert-hash sha256:ab", certificate_key="abc123")
    saved = persist_outcome(store, "cp-1", outcome, record.version, last_checked="2026-01-01 00:00:00")
    assert saved.is_primary
    assert saved.certificate_key == "abc123"
    assert saved.version == record.version + 1


def test_persist_outcome_refuses_stale_version():
    store = InMemoryNodeStore()
    record = store.save(make_record("cp-1", NodeType.CONTROL_PLANE, "192.168.0.11"))
    store.save(record.copy(name="renamed"))
    outcome = InstallationOutcome(succeeded=True, join_command="kubeadm join x", certificate_key="k")
    with pytest.raises(ConcurrencyConflict):
        persist_outcome(store, "cp-1", outcome, record.version)
    assert store.get("cp-1").join_command == ''


def test_outcome_has_no_timeout_flag():
    # timeouts surface as AsyncTimeout and the task's timed_out state
    assert list(InstallationOutcome.__dataclass_fields__) == [
        'succeeded', 'evidence', 'join_command', 'certificate_key',
    ]
