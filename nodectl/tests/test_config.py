import logging

import pytest
import yaml
from pydantic import ValidationError

from nodectl.config import Settings
from nodectl.logging import redact_command, setup_logger
from nodectl.models import Hop, NodeType
from nodectl.utils import load_hops, parse_hops, record_to_dict, redact_sensitive_data

from nodectl.tests.conftest import make_record


def test_defaults():
    settings = Settings()
    assert settings.probe.attempts == 10
    assert settings.probe.delayed_attempts == 3
    assert settings.watch.ceiling == 1800
    assert settings.logging.level in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def test_load_from_yaml(tmp_path):
    path = tmp_path / "nodectl.yaml"
    path.write_text(yaml.safe_dump({
        "probe": {"attempts": 4, "retry_delay": 0.5},
        "watch": {"ceiling": 600},
        "logging": {"level": "debug"},
        "unknown": True,
    }))
    settings = Settings.load(path)
    assert settings.probe.attempts == 4
    assert settings.probe.retry_delay == 0.5
    assert settings.watch.ceiling == 600
    assert settings.logging.level == "DEBUG"


def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Settings.load(tmp_path / "missing.yaml")


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        Settings(logging={"level": "LOUD"})
    with pytest.raises(ValidationError):
        Settings(probe={"attempts": 0})


def test_save_round_trip(tmp_path):
    path = tmp_path / "out" / "config.yaml"
    Settings(watch={"ceiling": 900}).save(path)
    assert Settings.load(path).watch.ceiling == 900


def test_redact_command_masks_sudo_password():
    command = "echo 'p@ss word' | sudo -S systemctl restart haproxy"
    assert redact_command(command) == "echo '***' | sudo -S systemctl restart haproxy"
    assert redact_command("login hunter2", ["hunter2"]) == "login ***"


def test_redact_sensitive_data_keeps_empty_values():
    data = redact_sensitive_data({"password": "x", "join_command": "", "nested": [{"token": "t"}], "name": "n"})
    assert data == {"password": "[REDACTED]", "join_command": "", "nested": [{"token": "[REDACTED]"}], "name": "n"}


def test_record_to_dict():
    record = make_record("cp-1", NodeType.CONTROL_PLANE, "10.0.0.11", join_command="kubeadm join x",
                         certificate_key="abc")
    data = record_to_dict(record)
    assert data["type"] == "control_plane"
    assert data["primary"] is True
    assert data["join_command"] == "[REDACTED]"
    assert data["hops"][0]["password"] == "[REDACTED]"
    assert record_to_dict(record, redact=False)["certificate_key"] == "abc"


def test_parse_hops():
    hops = parse_hops([{"host": "10.0.0.1", "user": "root", "port": "2222"}])
    assert hops == [Hop(host="10.0.0.1", username="root", password="", port=2222)]
    with pytest.raises(ValueError):
        parse_hops([{"host": "10.0.0.1"}])
    with pytest.raises(ValueError):
        parse_hops([])


def test_load_hops_accepts_list_or_mapping(tmp_path):
    as_list = tmp_path / "a.yaml"
    as_list.write_text(yaml.safe_dump([{"host": "h1", "username": "u"}]))
    as_map = tmp_path / "b.yaml"
    as_map.write_text(yaml.safe_dump({"hops": [{"host": "h1", "username": "u"}, {"host": "h2", "username": "u"}]}))
    assert len(load_hops(as_list)) == 1
    assert [h.host for h in load_hops(as_map)] == ["h1", "h2"]


def test_hop_repr_hides_password():
    assert "s3cret" not in repr(Hop("h", "u", "s3cret"))


def test_setup_logger_is_idempotent(tmp_path):
    log_file = tmp_path / "nodectl.log"
    logger = setup_logger("nodectl.test-idempotent", level=logging.DEBUG, log_file=str(log_file))
    setup_logger("nodectl.test-idempotent", level=logging.DEBUG, log_file=str(log_file))
    assert len(logger.handlers) == 2
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
