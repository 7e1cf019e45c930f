"""Global configuration for Bedrock Server Manager."""

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
import logging
import os

import yaml

logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "") in ("true", "TRUE", "1")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


class Config:
    """Global application configuration."""

    # Paths
    DATA_DIR = Path(os.getenv("DATA_DIR", "/opt/minecraft-servers"))
    # Where the data volume is mounted when the manager itself runs in a container
    APP_DATA_PATH = os.getenv("APP_DATA_PATH", "/app/minecraft-data")
    HOST_DATA_ROOT = _env_optional("HOST_DATA_ROOT")
    SERVER_DIR_PREFIX = os.getenv("SERVER_DIR_PREFIX", "bedrock-")

    # Docker
    DOCKER_HOST = _env_optional("DOCKER_HOST")
    BEDROCK_IMAGE = os.getenv("BEDROCK_IMAGE", "itzg/minecraft-bedrock-server")
    DOCKER_NETWORK = _env_optional("DOCKER_NETWORK")
    ENABLE_SSH = _env_flag("ENABLE_SSH")
    DOCKER_API_TIMEOUT = float(os.getenv("DOCKER_API_TIMEOUT", "30"))  # seconds
    DOCKER_PULL_TIMEOUT = float(os.getenv("DOCKER_PULL_TIMEOUT", "600"))  # seconds

    # Server defaults
    DEFAULT_MEMORY = int(os.getenv("DEFAULT_MEMORY", str(2 * 1024 ** 3)))  # 2 GiB

    # Cache
    INSPECT_CACHE_TTL = float(os.getenv("INSPECT_CACHE_TTL", "30"))  # seconds
    FILE_CACHE_TTL = float(os.getenv("FILE_CACHE_TTL", "30"))  # seconds

    # Broadcast
    BROADCAST_COALESCE_WINDOW = float(os.getenv("BROADCAST_COALESCE_WINDOW", "0.25"))  # seconds
    BROADCAST_QUEUE_SIZE = int(os.getenv("BROADCAST_QUEUE_SIZE", "100"))

    # UI
    STATUS_REFRESH_INTERVAL = 5  # seconds

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def load_file(cls, path: Path):
        """
        Override settings from a YAML file.

        Keys are matched case-insensitively against the attributes above;
        unknown keys are ignored with a warning.

        Args:
            path: Path to the YAML file

        Raises:
            RuntimeError: If the file cannot be read or is not a mapping
        """
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RuntimeError(f"Cannot read config file {path}: {e}")

        if not isinstance(data, dict):
            raise RuntimeError(f"Config file {path} must contain a mapping")

        for key, value in data.items():
            attr = str(key).upper()
            if attr.startswith("_") or not hasattr(cls, attr):
                logger.warning("Ignoring unknown config key %r in %s", key, path)
                continue
            current = getattr(cls, attr)
            if isinstance(current, Path):
                value = Path(value)
            setattr(cls, attr, value)

    @classmethod
    def docker_base_url(cls) -> str:
        """
        Docker Engine endpoint derived from DOCKER_HOST.

        Accepts tcp://host:port, unix:///path or a bare socket path.
        """
        host = cls.DOCKER_HOST
        if not host:
            return "unix:///var/run/docker.sock"
        if host.startswith(("tcp://", "unix://", "npipe://")):
            return host
        return f"unix://{host}"

    @classmethod
    def docker_host_name(cls) -> str:
        """Hostname players reach published ports on ("localhost" for a local socket)."""
        url = urlparse(cls.docker_base_url())
        if url.scheme == "tcp" and url.hostname:
            return url.hostname
        return "localhost"

    @classmethod
    def validate(cls):
        """
        Validate configuration on startup.

        Raises:
            RuntimeError: If configuration is invalid
        """
        config_file = _env_optional("BEDROCK_MANAGER_CONFIG")
        if config_file:
            cls.load_file(Path(config_file))

        if not cls.DATA_DIR.exists():
            raise RuntimeError(f"Data directory not found: {cls.DATA_DIR}")

        # Test Docker connection
        try:
            import docker
            client = docker.DockerClient(base_url=cls.docker_base_url(), timeout=int(cls.DOCKER_API_TIMEOUT))
            client.ping()
        except Exception as e:
            raise RuntimeError(
                f"Docker is not available: {e}\n"
                "Please ensure Docker is installed and running."
            )
