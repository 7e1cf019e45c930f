"""Network mode and port mapping policy for server containers."""

from typing import Optional

from .server import BEDROCK_PORT, NetworkDecision, ServerMetadata

# Network drivers that hand each container its own routable address
DIRECT_ADDRESS_MODES = ("macvlan", "ipvlan")

DEFAULT_NETWORK_MODE = "bridge"


def effective_network(metadata: ServerMetadata, default_network: Optional[str] = None) -> Optional[str]:
    """Network a server should join: its own, else the process default, else None."""
    return metadata.network or (default_network or "").strip() or None


def requires_port_mapping(network: Optional[str]) -> bool:
    """
    Whether a container on this network needs a host port binding.

    Args:
        network: Effective network name, or None for the default bridge

    Returns:
        False only for macvlan/ipvlan style networks
    """
    if not network:
        return True
    lowered = network.lower()
    return not any(mode in lowered for mode in DIRECT_ADDRESS_MODES)


def resolve(metadata: ServerMetadata, default_network: Optional[str] = None) -> NetworkDecision:
    """
    Derive the network decision for a server.

    Args:
        metadata: Server metadata record
        default_network: Process-wide default network (DOCKER_NETWORK)

    Returns:
        NetworkDecision; never raises
    """
    network = effective_network(metadata, default_network)

    if not requires_port_mapping(network):
        return NetworkDecision(network_mode=network, requires_port_mapping=False, exposed_port=None)

    return NetworkDecision(
        network_mode=network or DEFAULT_NETWORK_MODE,
        requires_port_mapping=True,
        exposed_port=metadata.port or BEDROCK_PORT,
    )
