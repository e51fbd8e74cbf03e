import os
from pathlib import Path

import pytest

from nodectl.config import Settings, set_settings
from nodectl.errors import TransportError
from nodectl.models import CommandResult, Hop, NodeRecord, NodeType
from nodectl.modules import poller
from nodectl.modules.executor import RemoteExecutor

FIXTURES = Path(__file__).parent / "fixtures"


def fixture_text(name):
    return (FIXTURES / name).read_text()


class FakeTransport:
    """Scripted transport: the first rule whose substring occurs in a command answers it."""

    def __init__(self):
        self.rules = []
        self.commands = []
        self.hosts = []
        self.open_error = None
        self.opened = 0
        self.closed = 0

    def on(self, substring, stdout='', stderr='', exit_code=0, raises=None, host=None, responses=None):
        """Register a reply. ``responses`` is a list of stdout values consumed per call (last one repeats)."""
        self.rules.append({
            'substring': substring, 'stdout': stdout, 'stderr': stderr, 'exit_code': exit_code,
            'raises': raises, 'host': host, 'responses': list(responses) if responses else None,
        })
        return self

    def open(self, hops):
        self.opened += 1
        if self.open_error is not None:
            raise self.open_error
        return list(hops)

    def run(self, session, command, timeout):
        host = session[-1].host
        self.commands.append(command)
        self.hosts.append(host)
        for rule in self.rules:
            if rule['substring'] not in command:
                continue
            if rule['host'] is not None and rule['host'] != host:
                continue
            if rule['raises'] is not None:
                raise rule['raises']
            stdout = rule['stdout']
            if rule['responses'] is not None:
                stdout = rule['responses'].pop(0) if len(rule['responses']) > 1 else rule['responses'][0]
            return CommandResult(command=command, stdout=stdout, stderr=rule['stderr'],
                                 exit_code=rule['exit_code'])
        return CommandResult(command=command)

    def close(self, session):
        self.closed += 1

    def ran(self, substring, host=None):
        return [c for c, h in zip(self.commands, self.hosts)
                if substring in c and (host is None or h == host)]


@pytest.fixture(autouse=True)
def settings():
    s = Settings()
    s.probe.attempts = 10
    s.probe.retry_delay = 1.0
    s.probe.delayed_attempts = 3
    s.watch.ceiling = 1800
    s.watch.interval = 10
    s.lease.ttl = 30
    s.lease.wait = 1
    set_settings(s)
    yield s
    set_settings(None)


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(poller.time, "sleep", lambda seconds: calls.append(seconds))
    return calls


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def executor(transport):
    return RemoteExecutor(transport=transport)


@pytest.fixture
def hop():
    return Hop(host="10.0.0.5", username="ubuntu", password="s3cret")


def make_record(node_id, node_type, host, infra_id="infra-1", **kwargs):
    return NodeRecord(
        id=node_id, infra_id=infra_id, name=kwargs.pop('name', node_id), type=node_type,
        hops=[Hop(host="bastion.example.com", username="jump", password="jumppw"),
              Hop(host=host, username="ubuntu", password="pw-" + node_id)],
        **kwargs
    )
