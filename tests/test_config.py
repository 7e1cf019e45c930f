from pathlib import Path

import pytest

from bedrock_manager.config import Config


@pytest.mark.parametrize("host, expected", [
    (None, "unix:///var/run/docker.sock"),
    ("tcp://10.0.0.5:2375", "tcp://10.0.0.5:2375"),
    ("unix:///run/user/1000/docker.sock", "unix:///run/user/1000/docker.sock"),
    ("/var/run/docker.sock", "unix:///var/run/docker.sock"),
])
def test_docker_base_url(monkeypatch, host, expected):
    monkeypatch.setattr(Config, "DOCKER_HOST", host)

    assert Config.docker_base_url() == expected


def test_load_file_overrides_settings(monkeypatch, tmp_path):
    for name in ("DATA_DIR", "DOCKER_NETWORK", "BROADCAST_COALESCE_WINDOW"):
        monkeypatch.setattr(Config, name, getattr(Config, name))
    config_file = tmp_path / "manager.yaml"
    config_file.write_text(
        "data_dir: /srv/minecraft\n"
        "docker_network: lan-macvlan\n"
        "broadcast_coalesce_window: 0.5\n"
        "no_such_setting: 1\n"
    )

    Config.load_file(config_file)

    assert Config.DATA_DIR == Path("/srv/minecraft")
    assert Config.DOCKER_NETWORK == "lan-macvlan"
    assert Config.BROADCAST_COALESCE_WINDOW == 0.5
    assert not hasattr(Config, "NO_SUCH_SETTING")


def test_load_file_requires_mapping(tmp_path):
    config_file = tmp_path / "manager.yaml"
    config_file.write_text("- just\n- a list\n")

    with pytest.raises(RuntimeError):
        Config.load_file(config_file)


def test_load_file_missing(tmp_path):
    with pytest.raises(RuntimeError):
        Config.load_file(tmp_path / "absent.yaml")


def test_validate_reports_missing_data_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("BEDROCK_MANAGER_CONFIG", raising=False)
    monkeypatch.setattr(Config, "DATA_DIR", tmp_path / "missing")

    with pytest.raises(RuntimeError, match="Data directory not found"):
        Config.validate()
