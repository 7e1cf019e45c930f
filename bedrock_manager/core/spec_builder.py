"""Container spec construction for new Bedrock servers."""

import posixpath
from typing import List, Optional

from . import network_policy
from .server import (
    BEDROCK_PORT,
    BEDROCK_PORT_PROTOCOL,
    DEFAULT_SERVER_NAME,
    DEFAULT_VERSION,
    LABEL_MANAGED_BY,
    LABEL_SERVER_ID,
    LABEL_SERVER_NAME,
    MANAGED_BY,
    ContainerSpec,
    NetworkDecision,
    ServerMetadata,
)
from ..config import Config

# Data path expected by the itzg/minecraft-bedrock-server image
CONTAINER_DATA_PATH = "/data"


class ContainerSpecBuilder:
    """Builds a ContainerSpec from a metadata record and global settings."""

    def __init__(
        self,
        image: Optional[str] = None,
        default_network: Optional[str] = None,
        enable_ssh: Optional[bool] = None,
        data_path: str = CONTAINER_DATA_PATH
    ):
        """
        Initialize spec builder with global settings.

        Args:
            image: Default image reference (defaults to Config.BEDROCK_IMAGE)
            default_network: Process-wide network (defaults to Config.DOCKER_NETWORK)
            enable_ssh: Add ENABLE_SSH to every server (defaults to Config.ENABLE_SSH)
            data_path: Mount target inside the container
        """
        self.image = image or Config.BEDROCK_IMAGE
        self.default_network = default_network if default_network is not None else Config.DOCKER_NETWORK
        self.enable_ssh = Config.ENABLE_SSH if enable_ssh is None else enable_ssh
        self.data_path = data_path

    def build(self, metadata: ServerMetadata, host_data_root: str) -> ContainerSpec:
        """
        Build the container spec for a server.

        Args:
            metadata: Server metadata record
            host_data_root: Data root as seen by the Docker host

        Returns:
            ContainerSpec; identical inputs give identical specs
        """
        decision = network_policy.resolve(metadata, self.default_network)
        port_key = f"{BEDROCK_PORT}/{BEDROCK_PORT_PROTOCOL}"

        if decision.requires_port_mapping:
            port_bindings = {port_key: decision.exposed_port}
            exposed_ports = []
        else:
            # Container gets its own address; expose the port without binding it
            port_bindings = {}
            exposed_ports = [port_key]

        return ContainerSpec(
            image=self.image_for(metadata),
            name=metadata.server_id,
            labels=self.build_labels(metadata),
            environment=self.build_env(metadata),
            binds=[f"{self.host_path(metadata.server_id, host_data_root)}:{self.data_path}"],
            memory=metadata.memory,
            network_mode=decision.network_mode,
            port_bindings=port_bindings,
            exposed_ports=exposed_ports,
        )

    def decide(self, metadata: ServerMetadata) -> NetworkDecision:
        """Network decision for a server under this builder's defaults."""
        return network_policy.resolve(metadata, self.default_network)

    def image_for(self, metadata: ServerMetadata) -> str:
        return metadata.image or self.image

    def build_env(self, metadata: ServerMetadata) -> List[str]:
        """
        Environment for the server container.

        Args:
            metadata: Server metadata record

        Returns:
            KEY=value strings
        """
        env = [
            "EULA=TRUE",
            f"VERSION={metadata.version or DEFAULT_VERSION}",
            f"SERVER_NAME={metadata.name or DEFAULT_SERVER_NAME}",
        ]

        if self.enable_ssh:
            env.append("ENABLE_SSH=TRUE")

        return env

    def build_labels(self, metadata: ServerMetadata) -> dict:
        return {
            LABEL_SERVER_ID: metadata.server_id,
            LABEL_SERVER_NAME: metadata.name or DEFAULT_SERVER_NAME,
            LABEL_MANAGED_BY: MANAGED_BY,
        }

    @staticmethod
    def host_path(server_id: str, host_data_root: str) -> str:
        # Host paths are POSIX paths on the Docker host regardless of our platform
        return posixpath.join(str(host_data_root), server_id)
