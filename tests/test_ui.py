import pytest

from bedrock_manager.config import Config
from bedrock_manager.core import network_policy
from bedrock_manager.core.server import ServerMetadata, ServerStatus, ServerView
from bedrock_manager.errors import ValidationError
from bedrock_manager.ui.screens.create_server import parse_memory
from bedrock_manager.ui.screens.main_screen import connection_address


@pytest.mark.parametrize("text, expected", [
    ("", None),
    ("  ", None),
    ("2G", 2147483648),
    ("2gb", 2147483648),
    ("1536M", 1536 * 1024 ** 2),
    ("1.5 GB", 1610612736),
    ("1073741824", 1073741824),
])
def test_parse_memory(text, expected):
    assert parse_memory(text) == expected


def test_parse_memory_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_memory("lots")


def _view(**fields):
    metadata = ServerMetadata(server_id="bedrock-0001", **fields)
    return metadata, ServerView(metadata=metadata, status=ServerStatus.RUNNING, ip_address="192.168.1.40")


def test_address_for_mapped_port(monkeypatch):
    monkeypatch.setattr(Config, "DOCKER_HOST", "tcp://10.0.0.5:2375")
    metadata, view = _view(port=19140)

    assert connection_address(view, network_policy.resolve(metadata)) == "10.0.0.5:19140"


def test_address_for_local_socket(monkeypatch):
    monkeypatch.setattr(Config, "DOCKER_HOST", None)
    metadata, view = _view()

    assert connection_address(view, network_policy.resolve(metadata)) == "localhost:19132"


def test_address_for_direct_network():
    metadata, view = _view(network="minecraft-macvlan")

    assert connection_address(view, network_policy.resolve(metadata)) == "192.168.1.40:19132"


def test_no_address_before_container_has_ip():
    metadata = ServerMetadata(server_id="bedrock-0001", network="minecraft-macvlan")
    view = ServerView(metadata=metadata, status=ServerStatus.CREATED)

    assert connection_address(view, network_policy.resolve(metadata)) is None
