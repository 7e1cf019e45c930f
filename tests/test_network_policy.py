import pytest

from bedrock_manager.core import network_policy
from bedrock_manager.core.server import NetworkDecision, ServerMetadata


def _metadata(**fields):
    fields.setdefault("server_id", "bedrock-0001")
    return ServerMetadata(**fields)


def test_default_server_gets_bridge_with_standard_port():
    metadata = _metadata(name="Survival", version="LATEST", memory=2147483648)

    decision = network_policy.resolve(metadata)

    assert decision == NetworkDecision(network_mode="bridge", requires_port_mapping=True, exposed_port=19132)


def test_macvlan_server_gets_own_address():
    metadata = _metadata(network="minecraft-macvlan")

    decision = network_policy.resolve(metadata)

    assert decision == NetworkDecision(
        network_mode="minecraft-macvlan", requires_port_mapping=False, exposed_port=None
    )


@pytest.mark.parametrize("network", ["macvlan", "MACVLAN", "lan-MacVlan-2", "ipvlan", "my_IPVLAN_net"])
def test_direct_address_networks_never_need_mapping(network):
    assert network_policy.requires_port_mapping(network) is False


@pytest.mark.parametrize("network", [None, "", "bridge", "host", "minecraft", "vlan", "mac-vlan"])
def test_other_networks_need_mapping(network):
    assert network_policy.requires_port_mapping(network) is True


def test_port_override_is_used():
    decision = network_policy.resolve(_metadata(port=25000))

    assert decision.exposed_port == 25000
    assert decision.requires_port_mapping is True


def test_default_network_applies_when_server_has_none():
    decision = network_policy.resolve(_metadata(), default_network="lan-ipvlan")

    assert decision.network_mode == "lan-ipvlan"
    assert decision.requires_port_mapping is False


def test_server_network_wins_over_default():
    decision = network_policy.resolve(_metadata(network="mc-bridge"), default_network="lan-macvlan")

    assert decision.network_mode == "mc-bridge"
    assert decision.requires_port_mapping is True


def test_blank_default_network_counts_as_absent():
    decision = network_policy.resolve(_metadata(), default_network="   ")

    assert decision.network_mode == "bridge"


def test_resolve_is_pure():
    metadata = _metadata(network="minecraft-macvlan", port=19133)
    before = metadata.model_dump()

    first = network_policy.resolve(metadata, "other")
    second = network_policy.resolve(metadata, "other")

    assert first == second
    assert metadata.model_dump() == before
